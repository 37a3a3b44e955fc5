"""Farm Exchange marketplace core."""
