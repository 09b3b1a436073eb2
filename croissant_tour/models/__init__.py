from croissant_tour.models.users import User
from croissant_tour.models.ratings import Rating

__all__ = ["User", "Rating"]
