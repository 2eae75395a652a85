"""GCS Credential Resolver - resolves mirror credentials from multiple sources.

Provides a unified way to load Google Cloud Storage credentials from:
1. Environment variables (GOOGLE_APPLICATION_CREDENTIALS + GCS_BUCKET_NAME)
2. .env file (for local development convenience)

A bucket without a credentials file is accepted: the storage client then
falls back to application default credentials.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Dict, Any, Tuple


class GCSCredentialResolver:
    """Resolve GCS credentials and the mirror bucket name.

    Priority order:
    1. Process environment
    2. .env file with GCS_CREDENTIALS_PATH / GOOGLE_APPLICATION_CREDENTIALS
    """

    DOTENV_PATHS = (
        Path('.env'),
        Path(__file__).parent.parent.parent.parent / '.env',  # Project root
    )

    @classmethod
    def resolve(
        cls,
        logger: Optional[logging.Logger] = None
    ) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """
        Try each credential source in priority order.

        Returns:
            Tuple of (credentials_dict, bucket_name). credentials_dict may be None
            when only a bucket is configured; (None, None) when nothing is found.
        """
        log = logger or logging.getLogger(__name__)

        env_vars = dict(os.environ)
        credentials, bucket_name = cls._from_values(env_vars, Path.cwd(), log)
        if bucket_name:
            log.info("Resolved GCS settings from environment variables")
            return credentials, bucket_name

        dotenv_path = cls._find_dotenv()
        if dotenv_path:
            credentials, bucket_name = cls._from_values(cls.read_dotenv(dotenv_path), dotenv_path.parent, log)
            if bucket_name:
                log.info(f"Resolved GCS settings from {dotenv_path}")
                return credentials, bucket_name

        log.debug("No GCS settings found from any source")
        return None, None

    @classmethod
    def _find_dotenv(cls) -> Optional[Path]:
        for path in cls.DOTENV_PATHS:
            if path.exists():
                return path
        return None

    @staticmethod
    def read_dotenv(dotenv_path: Path) -> Dict[str, str]:
        """Parse KEY=VALUE lines, ignoring blanks and comments."""
        env_vars: Dict[str, str] = {}
        with open(dotenv_path, 'r') as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, value = line.split('=', 1)
                    # Remove quotes if present
                    value = value.strip().strip('"').strip("'")
                    env_vars[key.strip()] = value
        return env_vars

    @classmethod
    def _from_values(
        cls,
        values: Dict[str, str],
        base_dir: Path,
        logger: logging.Logger
    ) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        bucket_name = values.get('GCS_BUCKET_NAME')
        if not bucket_name:
            return None, None

        credentials_path = values.get('GCS_CREDENTIALS_PATH') or values.get('GOOGLE_APPLICATION_CREDENTIALS')
        if not credentials_path:
            return None, bucket_name

        creds_path = Path(credentials_path)
        if not creds_path.is_absolute():
            creds_path = base_dir / creds_path

        if not creds_path.exists():
            logger.warning(f"Credentials file not found: {creds_path}")
            return None, bucket_name

        try:
            with open(creds_path, 'r') as f:
                return json.load(f), bucket_name
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read credentials file {creds_path}: {e}")
            return None, bucket_name
