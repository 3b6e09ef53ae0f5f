"""Visit ordering, distance providers and mileage calculation sessions."""
