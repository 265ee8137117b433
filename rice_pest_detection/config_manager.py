"""Configuration management with JSON persistence and change callbacks."""

import json
import os
from dataclasses import asdict, fields
from typing import Optional, Dict, Any, Callable, List

from .models.config import SystemConfig
from .config.defaults import DEFAULT_CONFIG, DEFAULT_PATHS
from .utils import ensure_directory_exists
from .logging_config import get_logger

logger = get_logger("config_manager")

LOCALIZER_STRATEGIES = ("none", "remote", "local")
BOX_FORMATS = ("center", "top_left")


class ConfigManager:
    """Manages system configuration with file persistence."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or DEFAULT_PATHS["config_file"]
        self._config: Optional[SystemConfig] = None
        self._config_change_callbacks: List[Callable[[SystemConfig], None]] = []

        self.load_config()

    @staticmethod
    def _known_fields() -> set:
        return {f.name for f in fields(SystemConfig)}

    def _from_dict(self, config_dict: Dict[str, Any]) -> SystemConfig:
        known = self._known_fields()
        unknown = sorted(set(config_dict) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        values = {k: v for k, v in config_dict.items() if k in known}
        if "camera_resolution" in values:
            values["camera_resolution"] = tuple(values["camera_resolution"])
        return SystemConfig(**values)

    def load_config(self) -> SystemConfig:
        """Load configuration from file or create default."""
        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r') as f:
                    config_dict = json.load(f)
                self._config = self._from_dict(config_dict)
            except (json.JSONDecodeError, TypeError, ValueError) as e:
                logger.error(f"Error loading config: {e}. Using defaults.")
                self._config = SystemConfig()
        else:
            self._config = SystemConfig()
            self.save_config()

        return self._config

    def save_config(self) -> None:
        """Save current configuration to file."""
        if self._config is None:
            return

        ensure_directory_exists(os.path.dirname(self.config_path))
        with open(self.config_path, 'w') as f:
            json.dump(self.export_config(), f, indent=2)

    def get_config(self) -> SystemConfig:
        """Get current configuration."""
        if self._config is None:
            return self.load_config()
        return self._config

    def update_config(self, **kwargs) -> None:
        """Update configuration with new values."""
        if self._config is None:
            self.load_config()

        for key, value in kwargs.items():
            if hasattr(self._config, key):
                setattr(self._config, key, value)
            else:
                logger.warning(f"Unknown config key ignored: {key}")

        self.save_config()
        self._notify_callbacks()

    def validate_config(self) -> bool:
        """Validate current configuration."""
        return not self.get_validation_errors()

    def get_validation_errors(self) -> List[str]:
        """List every problem with the current configuration."""
        config = self._config
        if config is None:
            return ["configuration not loaded"]

        errors = []

        # Reconciliation thresholds
        if not 0 <= config.min_confidence <= 100:
            errors.append("min_confidence must be between 0 and 100")
        if not 0 <= config.min_margin <= 100:
            errors.append("min_margin must be between 0 and 100")
        if not config.no_pest_label.strip():
            errors.append("no_pest_label must not be empty")
        if not 0.0 <= config.region_score_threshold <= 1.0:
            errors.append("region_score_threshold must be between 0 and 1")
        if config.debounce_seconds < 0:
            errors.append("debounce_seconds must not be negative")

        # Scan cadence and timeouts
        if config.scan_interval_ms < 50:
            errors.append("scan_interval_ms must be at least 50")
        for name in ("capture_timeout_seconds", "localizer_timeout_seconds",
                     "classifier_timeout_seconds", "preprocess_timeout_seconds"):
            if getattr(config, name) <= 0:
                errors.append(f"{name} must be positive")
        if config.capture_recovery_threshold < 1:
            errors.append("capture_recovery_threshold must be at least 1")

        # Models
        if config.target_size < 32:
            errors.append("target_size must be at least 32")
        if config.model_load_attempts < 1:
            errors.append("model_load_attempts must be at least 1")
        if config.model_load_backoff_seconds < 0:
            errors.append("model_load_backoff_seconds must not be negative")
        if config.num_threads < 1:
            errors.append("num_threads must be at least 1")

        # Localizer
        if config.localizer_strategy not in LOCALIZER_STRATEGIES:
            errors.append(f"localizer_strategy must be one of {', '.join(LOCALIZER_STRATEGIES)}")
        if config.localizer_strategy == "remote" and not config.remote_endpoint:
            errors.append("remote_endpoint is required for the remote localizer")
        if config.remote_box_format not in BOX_FORMATS:
            errors.append(f"remote_box_format must be one of {', '.join(BOX_FORMATS)}")
        if not 0.0 <= config.local_min_score <= 1.0:
            errors.append("local_min_score must be between 0 and 1")

        # Notifications
        if config.notification_cooldown_minutes < 0:
            errors.append("notification_cooldown_minutes must not be negative")
        if config.notification_max_per_hour < 1:
            errors.append("notification_max_per_hour must be at least 1")

        return errors

    def register_change_callback(self, callback: Callable[[SystemConfig], None]) -> None:
        """Register a callback to be called when config changes."""
        if callback not in self._config_change_callbacks:
            self._config_change_callbacks.append(callback)

    def unregister_change_callback(self, callback: Callable[[SystemConfig], None]) -> None:
        """Unregister a config change callback."""
        if callback in self._config_change_callbacks:
            self._config_change_callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in self._config_change_callbacks:
            try:
                callback(self._config)
            except Exception as e:
                logger.error(f"Error in config change callback: {e}")

    def get_reconciliation_parameters(self) -> Dict[str, Any]:
        """Parameters for the reconciliation engine."""
        config = self.get_config()
        return {
            'min_confidence': config.min_confidence,
            'min_margin': config.min_margin,
            'no_pest_label': config.no_pest_label,
            'region_score_threshold': config.region_score_threshold,
            'debounce_seconds': config.debounce_seconds
        }

    def get_scan_parameters(self) -> Dict[str, Any]:
        """Cadence and stage budgets for the scan loop."""
        config = self.get_config()
        return {
            'scan_interval_ms': config.scan_interval_ms,
            'capture_timeout_seconds': config.capture_timeout_seconds,
            'localizer_timeout_seconds': config.localizer_timeout_seconds,
            'preprocess_timeout_seconds': config.preprocess_timeout_seconds,
            'classifier_timeout_seconds': config.classifier_timeout_seconds,
            'capture_recovery_threshold': config.capture_recovery_threshold
        }

    def get_notification_parameters(self) -> Dict[str, Any]:
        """Parameters for the notification service."""
        config = self.get_config()
        return {
            'push_notifications_enabled': config.push_notifications_enabled,
            'notification_webhook_url': config.notification_webhook_url,
            'notification_cooldown_minutes': config.notification_cooldown_minutes,
            'notification_max_per_hour': config.notification_max_per_hour
        }

    def reset_to_defaults(self) -> None:
        """Reset configuration to default values."""
        self._config = SystemConfig(**DEFAULT_CONFIG)
        self.save_config()
        self._notify_callbacks()

    def export_config(self) -> Dict[str, Any]:
        """Export current configuration as a dictionary."""
        if not self._config:
            return {}
        data = asdict(self._config)
        data["camera_resolution"] = list(self._config.camera_resolution)
        return data

    def import_config(self, config_dict: Dict[str, Any]) -> bool:
        """
        Import configuration from a dictionary.

        Args:
            config_dict: Dictionary containing configuration values

        Returns:
            True if import was successful, False otherwise
        """
        try:
            temp_config = self._from_dict(config_dict)
        except (TypeError, ValueError) as e:
            logger.error(f"Error importing config: {e}")
            return False

        old_config = self._config
        self._config = temp_config

        errors = self.get_validation_errors()
        if errors:
            logger.warning(f"Rejected imported config: {'; '.join(errors)}")
            self._config = old_config
            return False

        self.save_config()
        self._notify_callbacks()
        return True
