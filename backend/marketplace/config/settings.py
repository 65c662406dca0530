from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./marketplace.db"
    log_level: str = "INFO"
    request_log_body_limit: int = 4000

    # OpenAI (intent extraction + voice transcription)
    openai_api_key: str = ""
    intent_model: str = "gpt-4.1-mini"
    transcription_model: str = "whisper-1"
    extractor_timeout_seconds: float = 15.0
    transcription_timeout_seconds: float = 30.0

    # Geocoding of store map links
    geocoder_timeout_seconds: float = 5.0
    # Hosts whose links are shortened and need one HEAD hop before parsing
    geocoder_short_link_hosts: list[str] = ["go.2gis.com", "maps.app.goo.gl", "goo.gl"]
    # 2GIS links put longitude first ("m=76.94,43.25")
    geocoder_coordinate_order: str = "lon,lat"

    # Lifetimes
    session_ttl_days: int = 30
    conversation_ttl_hours: int = 24
    result_ttl_hours: int = 24
    attachment_ttl_hours: int = 24

    # Conversational search behaviour
    candidate_limit: int = 50               # Max products pulled by a free-text match
    clarification_sample_size: int = 5      # Quick replies offered per question
    conversation_radius_meters: int = 1000  # "near me" radius for the chat flow
    direct_search_radius_meters: int = 10000
    direct_search_product_limit: int = 200

    # Uploads
    max_upload_bytes: int = 5 * 1024 * 1024
    storage_dir: str = "./media"
    public_base_url: str = "http://localhost:8000"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def media_base_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/media"


settings = Settings()
