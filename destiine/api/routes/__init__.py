from destiine.api.routes import auth, flights, hotels, payments, bookings

__all__ = ["auth", "flights", "hotels", "payments", "bookings"]
