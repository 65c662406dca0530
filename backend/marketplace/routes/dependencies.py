"""Service singletons as FastAPI dependencies, so tests can swap them via dependency_overrides."""
from marketplace.services.geocoder import Geocoder, geocoder
from marketplace.services.intent_extractor import IntentExtractor, intent_extractor
from marketplace.services.storage_service import LocalObjectStorage, object_storage
from marketplace.services.transcription_service import TranscriptionService, transcription_service


def get_intent_extractor() -> IntentExtractor:
    return intent_extractor


def get_geocoder() -> Geocoder:
    return geocoder


def get_transcription_service() -> TranscriptionService:
    return transcription_service


def get_object_storage() -> LocalObjectStorage:
    return object_storage
