from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Any, Dict, List
import json


# Production apartments and their Beds24 property/room pairs
DEFAULT_APARTMENT_MAPPING = {
    "design-apartman": {"prop_id": "227484", "room_id": "483027", "name": "Design Apartmán", "max_guests": 6},
    "lite-apartman": {"prop_id": "168900", "room_id": "357932", "name": "Lite Apartmán", "max_guests": 2},
    "deluxe-apartman": {"prop_id": "161445", "room_id": "357931", "name": "Deluxe Apartmán", "max_guests": 6},
}


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Beds24 Upstream Settings (Server-Side Only!)
    # ==============================================
    beds24_base_url: str = Field(
        default="https://api.beds24.com/v2",
        alias="BEDS24_BASE_URL"
    )
    beds24_access_token: str = Field(default="", alias="BEDS24_ACCESS_TOKEN")
    beds24_refresh_token: str = Field(default="", alias="BEDS24_REFRESH_TOKEN")

    # HTTP timeout and retries for upstream requests
    upstream_timeout_seconds: float = Field(default=10.0, alias="UPSTREAM_TIMEOUT_SECONDS")
    upstream_max_retries: int = Field(default=3, alias="UPSTREAM_MAX_RETRIES")

    # Longest range a single calendar request may cover
    upstream_max_range_days: int = Field(default=366, alias="UPSTREAM_MAX_RANGE_DAYS")

    # Requests per minute per upstream property
    upstream_rate_limit: int = Field(default=30, alias="UPSTREAM_RATE_LIMIT")

    # ==============================================
    # Cache Settings
    # ==============================================
    redis_url: str = Field(default="", alias="REDIS_URL")
    redis_timeout_seconds: float = Field(default=2.0, alias="REDIS_TIMEOUT_SECONDS")

    # TTL per cached category (seconds); only availability windows are cached
    cache_ttl_availability: int = Field(default=300, alias="CACHE_TTL_AVAILABILITY")

    # How long an expired entry stays readable for stale-serve
    cache_stale_grace_seconds: int = Field(default=86400, alias="CACHE_STALE_GRACE_SECONDS")

    # Circuit breaker for the distributed tier
    cache_circuit_failure_threshold: int = Field(default=5, alias="CACHE_CIRCUIT_FAILURE_THRESHOLD")
    cache_circuit_recovery_seconds: int = Field(default=60, alias="CACHE_CIRCUIT_RECOVERY_SECONDS")

    # ==============================================
    # Apartments & Booking Rules
    # ==============================================
    # JSON object: {"slug": {"prop_id": "...", "room_id": "...", "name": "...", "max_guests": 6}}
    apartment_mapping: str = Field(default="", alias="APARTMENT_MAPPING")
    default_min_stay: int = Field(default=1, alias="DEFAULT_MIN_STAY")
    default_max_stay: int = Field(default=30, alias="DEFAULT_MAX_STAY")
    currency: str = Field(default="EUR", alias="CURRENCY")

    # Public API rate limit (slowapi format)
    api_rate_limit: str = Field(default="120/minute", alias="API_RATE_LIMIT")

    @field_validator('upstream_max_range_days')
    @classmethod
    def validate_max_range(cls, v: int) -> int:
        """At most two years per calendar request"""
        if v < 1 or v > 731:
            raise ValueError("UPSTREAM_MAX_RANGE_DAYS must be between 1 and 731")
        return v

    @field_validator('apartment_mapping')
    @classmethod
    def validate_apartment_mapping(cls, v: str) -> str:
        if not v:
            return v
        try:
            parsed = json.loads(v)
        except ValueError:
            raise ValueError("APARTMENT_MAPPING must be valid JSON")
        if not isinstance(parsed, dict):
            raise ValueError("APARTMENT_MAPPING must be a JSON object")
        for slug, entry in parsed.items():
            if not isinstance(entry, dict) or not entry.get("prop_id") or not entry.get("room_id"):
                raise ValueError(f"APARTMENT_MAPPING entry '{slug}' needs prop_id and room_id")
            max_guests = entry.get("max_guests")
            if max_guests is not None and (isinstance(max_guests, bool) or not isinstance(max_guests, int) or max_guests < 1):
                raise ValueError(f"APARTMENT_MAPPING entry '{slug}' max_guests must be a positive integer")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def has_upstream_credentials(self) -> bool:
        """Check if Beds24 credentials are present"""
        return bool(self.beds24_access_token or self.beds24_refresh_token)

    @property
    def apartments(self) -> Dict[str, Dict[str, Any]]:
        """Apartment slug -> upstream ids and capacity, from env or built-in defaults"""
        if self.apartment_mapping:
            return json.loads(self.apartment_mapping)
        return DEFAULT_APARTMENT_MAPPING

    @property
    def cache_ttls(self) -> Dict[str, int]:
        return {
            "availability": self.cache_ttl_availability,
        }

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        if not self.allowed_origins:
            return ["http://localhost:3000"]

        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins or ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
