from dataclasses import asdict, dataclass, field, fields
from typing import List
import yaml
from pathlib import Path

from core.labeling import DEFAULT_CANDIDATE_LABELS


@dataclass
class ProcessingConfig:
    """Configuration for background batch processing"""
    batch_size: int = 50
    max_dimension: int = 1024  # Longest side of the decoded working image
    yield_every: int = 5
    batch_delay_seconds: float = 0.1
    memory_limit_percent: float = 95.0
    show_progress: bool = True


@dataclass
class DuplicateDetectionConfig:
    """Configuration for duplicate detection"""
    hash_size: int = 8
    similarity_threshold: float = 0.90
    strategy: str = "exhaustive"  # Options: exhaustive, prefix_bucket


@dataclass
class FaceConfig:
    """Configuration for face locating and embedding"""
    padding: int = 20
    min_face_size: float = 0.15
    same_person_threshold: float = 0.70
    canvas_size: int = 112
    stride: int = 8
    classify: bool = True  # Smile / eyes-open classification


@dataclass
class LabelingConfig:
    """Configuration for image labeling and OCR"""
    enable_labels: bool = False
    model_name: str = "openai/clip-vit-base-patch32"
    confidence_threshold: float = 0.7
    candidate_labels: List[str] = field(
        default_factory=lambda: list(DEFAULT_CANDIDATE_LABELS)
    )
    enable_ocr: bool = False
    ocr_languages: List[str] = field(default_factory=lambda: ["en"])
    min_words: int = 10


def _load_section(section_cls, values):
    """Build a section from a YAML mapping, ignoring unknown keys"""
    defaults = section_cls()
    if not values:
        return defaults

    known = {f.name for f in fields(section_cls)}
    kwargs = asdict(defaults)
    kwargs.update({k: v for k, v in values.items() if k in known})
    return section_cls(**kwargs)


@dataclass
class SystemConfig:
    """System-wide configuration"""
    database_path: str = "data/gallery.db"
    log_dir: str = "logs"
    log_level: str = "INFO"
    structured_logs: bool = False

    # Batch processing
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)

    # Duplicate detection
    duplicate_detection: DuplicateDetectionConfig = field(
        default_factory=DuplicateDetectionConfig
    )

    # Faces
    faces: FaceConfig = field(default_factory=FaceConfig)

    # Labels and OCR
    labeling: LabelingConfig = field(default_factory=LabelingConfig)

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file"""
        config_dict = asdict(self)

        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

    @classmethod
    def load(cls, path: str = "config.yaml") -> 'SystemConfig':
        """Load configuration from YAML file"""
        if not Path(path).exists():
            return cls()  # Return default config

        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        config = cls()

        # Load system settings
        config.database_path = config_dict.get('database_path', config.database_path)
        config.log_dir = config_dict.get('log_dir', config.log_dir)
        config.log_level = config_dict.get('log_level', config.log_level)
        config.structured_logs = config_dict.get('structured_logs', config.structured_logs)

        config.processing = _load_section(ProcessingConfig, config_dict.get('processing'))
        config.duplicate_detection = _load_section(
            DuplicateDetectionConfig, config_dict.get('duplicate_detection')
        )
        config.faces = _load_section(FaceConfig, config_dict.get('faces'))
        config.labeling = _load_section(LabelingConfig, config_dict.get('labeling'))

        return config
