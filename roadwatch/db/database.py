from sqlalchemy import create_engine, Column, String, Float, DateTime, Integer, Text, CheckConstraint, func
from sqlalchemy.orm import declarative_base, sessionmaker
import os
import uuid
import logging

# Get logger
logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DB_URL", "sqlite:///./roadwatch.db")
Base = declarative_base()

GEOCODE_STATUSES = ("pending", "resolved", "failed", "manual")
SEVERITIES = ("low", "moderate", "high")
REPORT_STATUSES = ("reported", "repairing", "repaired", "archived")


def _in(column, values):
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


def _new_id():
    return str(uuid.uuid4())


# Define the Pothole table structure
class PotholeDB(Base):
    __tablename__ = "potholes"
    __table_args__ = (
        CheckConstraint(_in("geocode_status", GEOCODE_STATUSES), name="ck_potholes_geocode_status"),
        CheckConstraint(_in("severity", SEVERITIES), name="ck_potholes_severity"),
        CheckConstraint(_in("status", REPORT_STATUSES), name="ck_potholes_status"),
    )

    id = Column(String, primary_key=True, index=True, default=_new_id)
    user_id = Column(String, nullable=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    address = Column(Text, nullable=True)
    normalized_address = Column(Text, nullable=True)
    parish = Column(String, nullable=True)
    municipality = Column(String, nullable=True, index=True)
    district = Column(String, nullable=True, index=True)
    postal_code = Column(String, nullable=True)
    geocode_status = Column(String, nullable=False, default="pending", index=True)
    geocoded_at = Column(DateTime(timezone=True), nullable=True)
    description = Column(Text, nullable=True)
    photo_url = Column(String, nullable=True)
    severity = Column(String, nullable=False, default="moderate")
    status = Column(String, nullable=False, default="reported")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    repaired_at = Column(DateTime(timezone=True), nullable=True)
    reopen_count = Column(Integer, nullable=False, default=0)


engine = create_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def create_tables(bind=None):
    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database tables created (if they didn't exist previously).")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        raise

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
