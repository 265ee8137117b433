"""Configuration data models."""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass
class SystemConfig:
    """System configuration settings."""
    # Reconciliation settings
    min_confidence: int = 90  # Percent, argmax must reach this
    min_margin: int = 10  # Percent gap between top-1 and top-2
    no_pest_label: str = "no pest"
    region_score_threshold: float = 0.5
    debounce_seconds: float = 10.0  # 0 disables duplicate suppression

    # Scan loop settings
    scan_interval_ms: int = 1000
    capture_timeout_seconds: float = 10.0
    localizer_timeout_seconds: float = 15.0
    classifier_timeout_seconds: float = 20.0
    preprocess_timeout_seconds: float = 10.0
    capture_recovery_threshold: int = 3  # Consecutive capture failures before the source is reopened

    # Classifier settings
    target_size: int = 224
    classifier_model_path: str = "models/pest_classifier.tflite"
    classifier_labels_path: str = "models/metadata.json"
    model_load_attempts: int = 3
    model_load_backoff_seconds: float = 0.5
    num_threads: int = 2

    # Localizer settings
    localizer_strategy: str = "none"  # none, remote, local
    remote_endpoint: str = ""
    remote_api_key: str = ""
    remote_box_format: str = "center"  # center, top_left
    local_model_path: str = "models/ssd_mobilenet_v2_coco_quant.tflite"
    local_allowed_labels: List[str] = field(default_factory=lambda: [
        "bird", "mouse", "cat", "dog", "bottle", "cup", "bowl", "vase",
        "chair", "laptop", "person", "cell phone", "book", "clock", "scissors",
    ])
    local_min_score: float = 0.4

    # Camera settings
    camera_source: str = "0"  # device index, video file or stream URL
    camera_resolution: Tuple[int, int] = (640, 480)

    # Catalog settings
    species_catalog_path: Optional[str] = None

    # Storage settings
    storage_enabled: bool = True
    database_path: str = "data/detections.db"
    default_location: str = "Rice Field"

    # Notification settings
    push_notifications_enabled: bool = False
    notification_webhook_url: str = ""
    notification_cooldown_minutes: int = 5
    notification_max_per_hour: int = 12
