"""Firebase Admin SDK initialization for push delivery."""

import json
import os

import firebase_admin
from firebase_admin import credentials
from structlog import get_logger

logger = get_logger(__name__)

_firebase_app: firebase_admin.App | None = None


def initialize_firebase(
    firebase_credentials_path: str | None = None, firebase_config_json: str | None = None
) -> firebase_admin.App:
    """
    Initialize Firebase Admin SDK.

    Args:
        firebase_credentials_path: Optional path to service account JSON file.
        firebase_config_json: Optional raw JSON string of service account.

    Looks for Firebase credentials in order:
    1. firebase_config_json parameter
    2. firebase_credentials_path parameter
    3. Default application credentials

    Returns:
        Firebase app instance
    """
    global _firebase_app

    if _firebase_app is not None:
        logger.info("firebase_already_initialized")
        return _firebase_app

    try:
        cred = None

        if firebase_config_json:
            logger.info("initializing_firebase_from_json")
            cred = credentials.Certificate(json.loads(firebase_config_json))

        elif firebase_credentials_path and os.path.exists(firebase_credentials_path):
            logger.info("initializing_firebase_from_file", path=firebase_credentials_path)
            cred = credentials.Certificate(firebase_credentials_path)

        if cred:
            _firebase_app = firebase_admin.initialize_app(cred)
        else:
            _firebase_app = firebase_admin.initialize_app()
            logger.info("firebase_initialized_with_default_credentials")

    except Exception as e:
        logger.error("firebase_initialization_failed", error=str(e))
        raise

    return _firebase_app


def get_firebase_app() -> firebase_admin.App:
    """
    Get the Firebase app instance.

    Returns:
        Firebase app instance

    Raises:
        RuntimeError: If Firebase is not initialized
    """
    if _firebase_app is None:
        raise RuntimeError("Firebase not initialized. Call initialize_firebase() first.")
    return _firebase_app
