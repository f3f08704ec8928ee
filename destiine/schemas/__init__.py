from destiine.schemas.user import UserCreate, UserResponse, UserLogin, Token, SessionInfo
from destiine.schemas.booking import (
    PassengerForm,
    GuestForm,
    FlightReserveRequest,
    HotelReserveRequest,
    FlightReservedQuery,
    HotelReservedQuery,
)
