from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from clarifind.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    user_type = Column(String(20), nullable=False)  # "patient" | "doctor"
    doctor_id = Column(String(20))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    # No password: tokens are issued for any known email
