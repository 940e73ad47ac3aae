from sqlalchemy import Column, Integer, String, Float, Date, DateTime, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

class DailyMetric(Base):
    """One row of aggregated telemetry per driver per UTC day."""
    __tablename__ = "driver_daily_metrics"
    id = Column(Integer, primary_key=True)
    driver_id = Column(String(128), nullable=False, index=True)
    driver_name = Column(String(255), default="")
    first_name = Column(String(255), default="")
    last_name = Column(String(255), default="")
    date = Column(Date, nullable=False)
    total_driving_hours = Column(Float, default=0.0)
    total_distance_km = Column(Float, default=0.0)
    night_driving_hours = Column(Float, default=0.0)
    harsh_brake_count = Column(Integer, default=0)
    acceleration_count = Column(Integer, default=0)
    speeding_count = Column(Integer, default=0)
    aggression_rate = Column(Float, default=0.0)
    vehicle_id = Column(String(128), default="")
    vehicle_name = Column(String(255), default="")
    vehicle_vin = Column(String(64), default="")
    vehicle_license_plate = Column(String(64), default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("driver_id", "date", name="uq_daily_metric_driver_date"),
    )

class BaselineProfile(Base):
    """14-day baseline snapshot for a driver, as of `date`."""
    __tablename__ = "driver_baseline_profiles"
    id = Column(Integer, primary_key=True)
    driver_id = Column(String(128), nullable=False, index=True)
    driver_name = Column(String(255), default="")
    first_name = Column(String(255), default="")
    last_name = Column(String(255), default="")
    date = Column(Date, nullable=False, index=True)
    avg_driving_hours = Column(Float, default=0.0)
    avg_night_hours = Column(Float, default=0.0)
    avg_aggression_rate = Column(Float, default=0.0)
    aggression_volatility = Column(Float, default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("driver_id", "date", name="uq_baseline_driver_date"),
    )
