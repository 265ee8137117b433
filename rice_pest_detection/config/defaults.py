"""Default configuration values and constants."""

from typing import Dict, Any, List

# Default system configuration
DEFAULT_CONFIG: Dict[str, Any] = {
    # Reconciliation settings
    "min_confidence": 90,
    "min_margin": 10,
    "no_pest_label": "no pest",
    "region_score_threshold": 0.5,
    "debounce_seconds": 10.0,

    # Scan loop settings
    "scan_interval_ms": 1000,
    "capture_timeout_seconds": 10.0,
    "localizer_timeout_seconds": 15.0,
    "classifier_timeout_seconds": 20.0,
    "preprocess_timeout_seconds": 10.0,
    "capture_recovery_threshold": 3,

    # Classifier settings
    "target_size": 224,
    "model_load_attempts": 3,
    "model_load_backoff_seconds": 0.5,

    # Localizer settings
    "localizer_strategy": "none",
    "remote_box_format": "center",
    "local_min_score": 0.4,
}

# System constants
SYSTEM_CONSTANTS = {
    "NORMALIZATION_SCALE": 127.5,
    "NORMALIZATION_OFFSET": 1.0,
    "MODEL_LOAD_BACKOFF_FACTOR": 2.0,
    "REMOTE_REQUEST_TIMEOUT_SECONDS": 10,
    "NOTIFICATION_RETRY_ATTEMPTS": 3,
    "MAX_QUEUE_SIZE": 100,
    "JPEG_QUALITY": 90,
}

# File paths and directories
DEFAULT_PATHS = {
    "config_file": "config.json",
    "storage_dir": "data",
    "logs_dir": "logs",
    "models_dir": "models",
    "database_file": "data/detections.db",
}

# Inference model settings
MODEL_SETTINGS = {
    "classifier_model_path": "models/pest_classifier.tflite",
    "classifier_labels_path": "models/metadata.json",
    "local_model_path": "models/ssd_mobilenet_v2_coco_quant.tflite",
    "num_threads": 2,
}

# Recommendations used when no catalog entry matches
REJECTED_RECOMMENDATIONS: List[str] = [
    "Continue monitoring",
    "No immediate action required",
]
FALLBACK_RECOMMENDATIONS: List[str] = [
    "Apply appropriate treatment",
    "Monitor affected areas",
]

# COCO labels for the on-device SSD localizer
COCO_LABELS = {
    0: "person", 1: "bicycle", 2: "car", 3: "motorcycle", 4: "airplane", 5: "bus",
    6: "train", 7: "truck", 8: "boat", 9: "traffic light", 10: "fire hydrant",
    12: "stop sign", 13: "parking meter", 14: "bench", 15: "bird", 16: "cat",
    17: "dog", 18: "horse", 19: "sheep", 20: "cow", 21: "elephant", 22: "bear",
    23: "zebra", 24: "giraffe", 26: "backpack", 27: "umbrella", 30: "handbag",
    31: "tie", 32: "suitcase", 33: "frisbee", 34: "skis", 35: "snowboard",
    36: "sports ball", 37: "kite", 38: "baseball bat", 39: "baseball glove",
    40: "skateboard", 41: "surfboard", 42: "tennis racket", 43: "bottle",
    45: "wine glass", 46: "cup", 47: "fork", 48: "knife", 49: "spoon", 50: "bowl",
    51: "banana", 52: "apple", 53: "sandwich", 54: "orange", 55: "broccoli",
    56: "carrot", 57: "hot dog", 58: "pizza", 59: "donut", 60: "cake", 61: "chair",
    62: "couch", 63: "potted plant", 64: "bed", 66: "dining table", 69: "toilet",
    71: "tv", 72: "laptop", 73: "mouse", 74: "remote", 75: "keyboard",
    76: "cell phone", 77: "microwave", 78: "oven", 79: "toaster", 80: "sink",
    81: "refrigerator", 83: "book", 84: "clock", 85: "vase", 86: "scissors",
    87: "teddy bear", 88: "hair drier", 89: "toothbrush",
}

# Seed entries for the static pest catalog
DEFAULT_PEST_SPECIES: List[Dict[str, Any]] = [
    {
        "name": "Golden Apple Snail",
        "scientific_name": "Pomacea canaliculata",
        "description": "Freshwater snail that grazes on young rice seedlings and can wipe out "
                       "newly transplanted paddies",
        "symptoms": "Seedlings missing from rows, ragged holes in leaves, bright pink egg "
                    "clusters on stems, snails visible in standing water",
        "treatment": "PESTICIDE: Place molluscicide baits such as metaldehyde or iron phosphate "
                     "along the field edges. MANUAL: Pick snails by hand in the early morning, "
                     "drain the field at intervals and let ducks forage after harvest. "
                     "LOCAL STORES: Ask at agricultural supply shops or the farm cooperative",
        "danger_level": "high",
    },
    {
        "name": "Rice Field Rat",
        "scientific_name": "Rattus argentiventer",
        "description": "Rodent that feeds on grain, cuts tillers and digs burrows into the "
                       "field bunds",
        "symptoms": "Tillers cut near the base, empty panicles, burrow openings in the bunds, "
                    "droppings along the levees",
        "treatment": "PESTICIDE: Set rodenticide baits such as bromadiolone inside covered bait "
                     "stations. MANUAL: Trap along runways, keep bunds free of weeds and "
                     "coordinate trapping with neighbouring farms. LOCAL STORES: Hardware "
                     "stores and agricultural centers carry baits and traps",
        "danger_level": "high",
    },
    {
        "name": "Rice Black Bug",
        "scientific_name": "Scotinophara lurida",
        "description": "Dark sap-sucking bug that feeds on the stems of rice plants and "
                       "weakens the crop",
        "symptoms": "Yellowing plants, stunted tillers, bronzed leaves, black bugs clustered "
                    "near the water line, poorly filled grains",
        "treatment": "PESTICIDE: Spray an insecticide such as imidacloprid or cypermethrin at "
                     "the first sign of infestation. MANUAL: Run light traps at night and "
                     "collect bugs with sweep nets. LOCAL STORES: Agricultural supply stores "
                     "and plant nurseries",
        "danger_level": "medium",
    },
    {
        "name": "Grasshoppers",
        "scientific_name": "Locusta migratoria",
        "description": "Chewing insects that strip rice leaves and can defoliate whole fields "
                       "during outbreaks",
        "symptoms": "Leaf margins eaten away, defoliated hills, damaged panicles, insects "
                    "jumping when the crop is disturbed",
        "treatment": "PESTICIDE: Apply a contact insecticide such as malathion while the "
                     "insects are still nymphs. MANUAL: Collect them in the cool early morning "
                     "and keep field borders mown. LOCAL STORES: Garden centers and farm "
                     "supply stores",
        "danger_level": "medium",
    },
]
