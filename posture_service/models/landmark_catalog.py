"""
POSTUREIQ Posture Service - Landmark & Deviation Catalog

Closed vocabularies for anatomical landmarks, photo views and deviation
types, plus the single lookup table (deviation type -> views, unit,
normal range, body region) that analysis, comparison and trends share.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class PostureView(str, Enum):
    """Camera views captured during a posture assessment."""
    ANTERIOR = "ANTERIOR"
    POSTERIOR = "POSTERIOR"
    LATERAL_LEFT = "LATERAL_LEFT"
    LATERAL_RIGHT = "LATERAL_RIGHT"

    @property
    def label(self) -> str:
        return VIEW_INFO[self]["label"]

    @property
    def is_lateral(self) -> bool:
        return self in (PostureView.LATERAL_LEFT, PostureView.LATERAL_RIGHT)


# Canonical ordering used whenever results are flattened across views
VIEW_ORDER: Tuple[PostureView, ...] = (
    PostureView.ANTERIOR,
    PostureView.POSTERIOR,
    PostureView.LATERAL_LEFT,
    PostureView.LATERAL_RIGHT,
)


class LandmarkGroup(str, Enum):
    HEAD = "head"
    SPINE = "spine"
    SHOULDER = "shoulder"
    PELVIS = "pelvis"
    KNEE = "knee"
    ANKLE = "ankle"
    FOOT = "foot"


class LandmarkName(str, Enum):
    """Anatomical points a detector (or practitioner) can place."""
    # Head and neck
    LEFT_EAR = "left_ear"
    RIGHT_EAR = "right_ear"
    NOSE = "nose"
    CHIN = "chin"
    EXTERNAL_AUDITORY_MEATUS = "external_auditory_meatus"

    # Spine
    C7_SPINOUS = "c7_spinous"
    T1_SPINOUS = "t1_spinous"
    T4_SPINOUS = "t4_spinous"
    T8_SPINOUS = "t8_spinous"
    T12_SPINOUS = "t12_spinous"
    L3_SPINOUS = "l3_spinous"
    L5_SPINOUS = "l5_spinous"
    S2_SPINOUS = "s2_spinous"

    # Shoulders
    LEFT_SHOULDER = "left_shoulder"
    RIGHT_SHOULDER = "right_shoulder"
    LEFT_CLAVICLE = "left_clavicle"
    RIGHT_CLAVICLE = "right_clavicle"

    # Hips and pelvis
    LEFT_HIP = "left_hip"
    RIGHT_HIP = "right_hip"
    LEFT_PSIS = "left_psis"
    RIGHT_PSIS = "right_psis"
    LEFT_ILIAC_CREST = "left_iliac_crest"
    RIGHT_ILIAC_CREST = "right_iliac_crest"
    GREATER_TROCHANTER = "greater_trochanter"

    # Knees
    LEFT_KNEE = "left_knee"
    RIGHT_KNEE = "right_knee"
    LEFT_PATELLA = "left_patella"
    RIGHT_PATELLA = "right_patella"

    # Ankles and feet
    LEFT_ANKLE = "left_ankle"
    RIGHT_ANKLE = "right_ankle"
    LEFT_MEDIAL_MALLEOLUS = "left_medial_malleolus"
    RIGHT_MEDIAL_MALLEOLUS = "right_medial_malleolus"
    LEFT_HEEL = "left_heel"
    RIGHT_HEEL = "right_heel"


class BodyRegion(str, Enum):
    HEAD_NECK = "head_neck"
    SHOULDERS = "shoulders"
    SPINE = "spine"
    PELVIS = "pelvis"
    KNEES = "knees"
    ANKLES = "ankles"
    WHOLE_BODY = "whole_body"


class MeasurementUnit(str, Enum):
    DEGREES = "degrees"
    MILLIMETERS = "mm"
    PERCENT = "%"

    @property
    def symbol(self) -> str:
        return {"degrees": "°", "mm": "mm", "%": "%"}[self.value]


class DeviationType(str, Enum):
    """Fixed postural deviation taxonomy."""
    HEAD_FORWARD = "head_forward"
    HEAD_TILT = "head_tilt"
    HEAD_ROTATION = "head_rotation"
    SHOULDER_UNEVEN = "shoulder_uneven"
    SHOULDER_PROTRACTED = "shoulder_protracted"
    KYPHOSIS = "kyphosis"
    LORDOSIS = "lordosis"
    SCOLIOSIS = "scoliosis"
    HIP_UNEVEN = "hip_uneven"
    PELVIC_TILT_LATERAL = "pelvic_tilt_lateral"
    PELVIC_TILT_ANTERIOR = "pelvic_tilt_anterior"
    KNEE_VALGUS = "knee_valgus"
    KNEE_VARUS = "knee_varus"
    KNEE_HYPEREXTENSION = "knee_hyperextension"
    ANKLE_PRONATION = "ankle_pronation"
    ANKLE_SUPINATION = "ankle_supination"
    WEIGHT_SHIFT = "weight_shift"

    @property
    def definition(self) -> "DeviationDefinition":
        return DEVIATION_DEFINITIONS[self]


# ═══════════════════════════════════════════════════════════════════════════════
# LANDMARK DEFINITIONS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LandmarkDefinition:
    label: str
    group: LandmarkGroup
    views: Tuple[PostureView, ...]


_A = PostureView.ANTERIOR
_P = PostureView.POSTERIOR
_LL = PostureView.LATERAL_LEFT
_LR = PostureView.LATERAL_RIGHT

LANDMARK_DEFINITIONS: Dict[LandmarkName, LandmarkDefinition] = {
    LandmarkName.LEFT_EAR: LandmarkDefinition("Left Ear", LandmarkGroup.HEAD, (_A, _P, _LL)),
    LandmarkName.RIGHT_EAR: LandmarkDefinition("Right Ear", LandmarkGroup.HEAD, (_A, _P, _LR)),
    LandmarkName.NOSE: LandmarkDefinition("Nose", LandmarkGroup.HEAD, (_A, _P)),
    LandmarkName.CHIN: LandmarkDefinition("Chin", LandmarkGroup.HEAD, (_A, _LL, _LR)),
    LandmarkName.EXTERNAL_AUDITORY_MEATUS: LandmarkDefinition(
        "External Auditory Meatus", LandmarkGroup.HEAD, (_LL, _LR)
    ),

    # Spinous processes are palpated and marked on lateral photos as well
    LandmarkName.C7_SPINOUS: LandmarkDefinition("C7 Spinous Process", LandmarkGroup.SPINE, (_P, _LL, _LR)),
    LandmarkName.T1_SPINOUS: LandmarkDefinition("T1 Spinous Process", LandmarkGroup.SPINE, (_P,)),
    LandmarkName.T4_SPINOUS: LandmarkDefinition("T4 Spinous Process", LandmarkGroup.SPINE, (_P, _LL, _LR)),
    LandmarkName.T8_SPINOUS: LandmarkDefinition("T8 Spinous Process", LandmarkGroup.SPINE, (_P, _LL, _LR)),
    LandmarkName.T12_SPINOUS: LandmarkDefinition("T12 Spinous Process", LandmarkGroup.SPINE, (_P, _LL, _LR)),
    LandmarkName.L3_SPINOUS: LandmarkDefinition("L3 Spinous Process", LandmarkGroup.SPINE, (_P, _LL, _LR)),
    LandmarkName.L5_SPINOUS: LandmarkDefinition("L5 Spinous Process", LandmarkGroup.SPINE, (_P,)),
    LandmarkName.S2_SPINOUS: LandmarkDefinition("S2 Spinous Process", LandmarkGroup.SPINE, (_P, _LL, _LR)),

    LandmarkName.LEFT_SHOULDER: LandmarkDefinition("Left Shoulder (Acromion)", LandmarkGroup.SHOULDER, (_A, _P, _LL)),
    LandmarkName.RIGHT_SHOULDER: LandmarkDefinition("Right Shoulder (Acromion)", LandmarkGroup.SHOULDER, (_A, _P, _LR)),
    LandmarkName.LEFT_CLAVICLE: LandmarkDefinition("Left Clavicle", LandmarkGroup.SHOULDER, (_A,)),
    LandmarkName.RIGHT_CLAVICLE: LandmarkDefinition("Right Clavicle", LandmarkGroup.SHOULDER, (_A,)),

    LandmarkName.LEFT_HIP: LandmarkDefinition("Left Hip (ASIS)", LandmarkGroup.PELVIS, (_A, _LL)),
    LandmarkName.RIGHT_HIP: LandmarkDefinition("Right Hip (ASIS)", LandmarkGroup.PELVIS, (_A, _LR)),
    LandmarkName.LEFT_PSIS: LandmarkDefinition("Left PSIS", LandmarkGroup.PELVIS, (_P, _LL)),
    LandmarkName.RIGHT_PSIS: LandmarkDefinition("Right PSIS", LandmarkGroup.PELVIS, (_P, _LR)),
    LandmarkName.LEFT_ILIAC_CREST: LandmarkDefinition("Left Iliac Crest", LandmarkGroup.PELVIS, (_P,)),
    LandmarkName.RIGHT_ILIAC_CREST: LandmarkDefinition("Right Iliac Crest", LandmarkGroup.PELVIS, (_P,)),
    LandmarkName.GREATER_TROCHANTER: LandmarkDefinition("Greater Trochanter", LandmarkGroup.PELVIS, (_LL, _LR)),

    LandmarkName.LEFT_KNEE: LandmarkDefinition("Left Knee", LandmarkGroup.KNEE, (_A, _P, _LL)),
    LandmarkName.RIGHT_KNEE: LandmarkDefinition("Right Knee", LandmarkGroup.KNEE, (_A, _P, _LR)),
    LandmarkName.LEFT_PATELLA: LandmarkDefinition("Left Patella", LandmarkGroup.KNEE, (_A,)),
    LandmarkName.RIGHT_PATELLA: LandmarkDefinition("Right Patella", LandmarkGroup.KNEE, (_A,)),

    LandmarkName.LEFT_ANKLE: LandmarkDefinition("Left Ankle (Lateral Malleolus)", LandmarkGroup.ANKLE, (_A, _LL)),
    LandmarkName.RIGHT_ANKLE: LandmarkDefinition("Right Ankle (Lateral Malleolus)", LandmarkGroup.ANKLE, (_A, _LR)),
    LandmarkName.LEFT_MEDIAL_MALLEOLUS: LandmarkDefinition("Left Medial Malleolus", LandmarkGroup.ANKLE, (_A, _P)),
    LandmarkName.RIGHT_MEDIAL_MALLEOLUS: LandmarkDefinition("Right Medial Malleolus", LandmarkGroup.ANKLE, (_A, _P)),

    LandmarkName.LEFT_HEEL: LandmarkDefinition("Left Heel", LandmarkGroup.FOOT, (_P, _LL)),
    LandmarkName.RIGHT_HEEL: LandmarkDefinition("Right Heel", LandmarkGroup.FOOT, (_P, _LR)),
}

LANDMARK_GROUPS: Dict[LandmarkGroup, Dict[str, str]] = {
    LandmarkGroup.HEAD: {"label": "Head & Neck", "color": "#ef4444"},
    LandmarkGroup.SPINE: {"label": "Spine", "color": "#f97316"},
    LandmarkGroup.SHOULDER: {"label": "Shoulders", "color": "#eab308"},
    LandmarkGroup.PELVIS: {"label": "Pelvis & Hips", "color": "#22c55e"},
    LandmarkGroup.KNEE: {"label": "Knees", "color": "#3b82f6"},
    LandmarkGroup.ANKLE: {"label": "Ankles", "color": "#8b5cf6"},
    LandmarkGroup.FOOT: {"label": "Feet", "color": "#ec4899"},
}


def landmarks_for_view(view: PostureView) -> List[LandmarkName]:
    """Landmarks a practitioner is expected to place on a given view."""
    return [name for name, definition in LANDMARK_DEFINITIONS.items() if view in definition.views]


# ═══════════════════════════════════════════════════════════════════════════════
# VIEW INFORMATION
# ═══════════════════════════════════════════════════════════════════════════════

VIEW_INFO: Dict[PostureView, Dict] = {
    PostureView.ANTERIOR: {
        "label": "Anterior (Front) View",
        "description": "Patient facing the camera, arms relaxed at sides",
        "guide_points": ["Ears level", "Shoulders level", "Hips level", "Knees aligned", "Feet hip-width apart"],
    },
    PostureView.POSTERIOR: {
        "label": "Posterior (Back) View",
        "description": "Patient facing away from the camera",
        "guide_points": ["Head centered", "Spine straight", "Shoulder blades level", "Hips level", "Heels aligned"],
    },
    PostureView.LATERAL_LEFT: {
        "label": "Left Lateral View",
        "description": "Patient's left side facing the camera",
        "guide_points": ["Ear over shoulder", "Shoulder over hip", "Hip over knee", "Knee over ankle"],
    },
    PostureView.LATERAL_RIGHT: {
        "label": "Right Lateral View",
        "description": "Patient's right side facing the camera",
        "guide_points": ["Ear over shoulder", "Shoulder over hip", "Hip over knee", "Knee over ankle"],
    },
}


# ═══════════════════════════════════════════════════════════════════════════════
# DEVIATION DEFINITIONS
# ═══════════════════════════════════════════════════════════════════════════════

BODY_REGIONS: Dict[BodyRegion, Dict[str, str]] = {
    BodyRegion.HEAD_NECK: {"label": "Head/Neck", "color": "#ef4444"},
    BodyRegion.SHOULDERS: {"label": "Shoulders", "color": "#eab308"},
    BodyRegion.SPINE: {"label": "Spine", "color": "#f97316"},
    BodyRegion.PELVIS: {"label": "Pelvis", "color": "#22c55e"},
    BodyRegion.KNEES: {"label": "Knees", "color": "#3b82f6"},
    BodyRegion.ANKLES: {"label": "Ankles", "color": "#8b5cf6"},
    BodyRegion.WHOLE_BODY: {"label": "Overall Alignment", "color": "#64748b"},
}


@dataclass(frozen=True)
class DeviationDefinition:
    name: str
    description: str
    views: Tuple[PostureView, ...]
    unit: MeasurementUnit
    normal_range_min: float
    normal_range_max: float
    region: BodyRegion
    measurement_method: str
    side_specific: bool = False

    @property
    def normal_range(self) -> Tuple[float, float]:
        return (self.normal_range_min, self.normal_range_max)

    @property
    def normal_midpoint(self) -> float:
        return (self.normal_range_min + self.normal_range_max) / 2


_FRONTAL = (_A, _P)
_LATERAL = (_LL, _LR)
_DEG = MeasurementUnit.DEGREES

# Insertion order is the canonical deviation order within a view.
DEVIATION_DEFINITIONS: Dict[DeviationType, DeviationDefinition] = {
    DeviationType.HEAD_FORWARD: DeviationDefinition(
        "Forward Head Posture", "Head positioned anterior to the plumb line",
        _LATERAL, _DEG, 0, 8, BodyRegion.HEAD_NECK, "c7_ear_inclination",
    ),
    DeviationType.HEAD_TILT: DeviationDefinition(
        "Head Tilt", "Lateral head tilt to one side",
        _FRONTAL, _DEG, -2, 2, BodyRegion.HEAD_NECK, "ear_level_angle",
    ),
    DeviationType.HEAD_ROTATION: DeviationDefinition(
        "Head Rotation", "Rotation of the head on the cervical spine",
        _FRONTAL, _DEG, -5, 5, BodyRegion.HEAD_NECK, "nose_ear_asymmetry",
    ),
    DeviationType.SHOULDER_UNEVEN: DeviationDefinition(
        "Uneven Shoulders", "Asymmetric shoulder height",
        _FRONTAL, MeasurementUnit.MILLIMETERS, -10, 10, BodyRegion.SHOULDERS, "shoulder_level",
    ),
    DeviationType.SHOULDER_PROTRACTED: DeviationDefinition(
        "Shoulder Protraction", "Shoulders rolled forward",
        _LATERAL, _DEG, 0, 15, BodyRegion.SHOULDERS, "shoulder_plumb_angle",
    ),
    DeviationType.KYPHOSIS: DeviationDefinition(
        "Thoracic Kyphosis", "Curvature of the thoracic spine (round upper back)",
        _LATERAL, _DEG, 20, 40, BodyRegion.SPINE, "thoracic_chord_angle",
    ),
    DeviationType.LORDOSIS: DeviationDefinition(
        "Lumbar Lordosis", "Curvature of the lumbar spine (lower back curve)",
        _LATERAL, _DEG, 30, 50, BodyRegion.SPINE, "lumbar_chord_angle",
    ),
    DeviationType.SCOLIOSIS: DeviationDefinition(
        "Scoliotic Curve", "Lateral curvature of the spine",
        (_P,), _DEG, -5, 5, BodyRegion.SPINE, "spinal_curve",
    ),
    DeviationType.HIP_UNEVEN: DeviationDefinition(
        "Uneven Hips", "Asymmetric hip/iliac crest height",
        _FRONTAL, MeasurementUnit.MILLIMETERS, -8, 8, BodyRegion.PELVIS, "hip_level",
    ),
    DeviationType.PELVIC_TILT_LATERAL: DeviationDefinition(
        "Lateral Pelvic Tilt", "Pelvis tilted to one side",
        (_P,), _DEG, -3, 3, BodyRegion.PELVIS, "psis_angle",
    ),
    DeviationType.PELVIC_TILT_ANTERIOR: DeviationDefinition(
        "Anterior Pelvic Tilt", "Excessive forward tilt of pelvis",
        _LATERAL, _DEG, 7, 15, BodyRegion.PELVIS, "asis_psis_angle",
    ),
    DeviationType.KNEE_VALGUS: DeviationDefinition(
        "Knee Valgus (Knock-Knees)", "Knees angled inward",
        (_A,), _DEG, -3, 8, BodyRegion.KNEES, "knee_frontal_angle", side_specific=True,
    ),
    DeviationType.KNEE_VARUS: DeviationDefinition(
        "Knee Varus (Bow-Legs)", "Knees angled outward",
        (_A,), _DEG, -8, 3, BodyRegion.KNEES, "knee_frontal_angle", side_specific=True,
    ),
    DeviationType.KNEE_HYPEREXTENSION: DeviationDefinition(
        "Knee Hyperextension", "Excessive backward bending of the knee",
        _LATERAL, _DEG, -5, 0, BodyRegion.KNEES, "knee_lateral_angle",
    ),
    DeviationType.ANKLE_PRONATION: DeviationDefinition(
        "Ankle Pronation", "Feet rolling inward",
        (_P,), _DEG, 0, 6, BodyRegion.ANKLES, "rearfoot_angle", side_specific=True,
    ),
    DeviationType.ANKLE_SUPINATION: DeviationDefinition(
        "Ankle Supination", "Feet rolling outward",
        (_P,), _DEG, -6, 0, BodyRegion.ANKLES, "rearfoot_angle", side_specific=True,
    ),
    DeviationType.WEIGHT_SHIFT: DeviationDefinition(
        "Weight Distribution Shift", "Center of mass shifted from midline",
        _FRONTAL, MeasurementUnit.PERCENT, 45, 55, BodyRegion.WHOLE_BODY, "center_of_mass",
    ),
}

DEVIATION_ORDER: Dict[DeviationType, int] = {
    deviation_type: index for index, deviation_type in enumerate(DEVIATION_DEFINITIONS)
}


def view_deviation_types(view: PostureView) -> Tuple[DeviationType, ...]:
    """Deviation types measured in a view, in canonical order."""
    return tuple(
        deviation_type
        for deviation_type, definition in DEVIATION_DEFINITIONS.items()
        if view in definition.views
    )


def region_deviation_types(region: BodyRegion) -> Tuple[DeviationType, ...]:
    return tuple(
        deviation_type
        for deviation_type, definition in DEVIATION_DEFINITIONS.items()
        if definition.region == region
    )


def get_view_types() -> List[Dict]:
    """View metadata with capture guidance for the photo capture UI."""
    return [
        {
            "value": view.value,
            "label": VIEW_INFO[view]["label"],
            "description": VIEW_INFO[view]["description"],
            "guide_points": list(VIEW_INFO[view]["guide_points"]),
            "landmarks": [name.value for name in landmarks_for_view(view)],
            "deviation_types": [t.value for t in view_deviation_types(view)],
        }
        for view in VIEW_ORDER
    ]


def get_catalog() -> Dict:
    """Serializable snapshot of the landmark and deviation catalog."""
    return {
        "landmarks": [
            {
                "name": name.value,
                "label": definition.label,
                "group": definition.group.value,
                "views": [v.value for v in definition.views],
            }
            for name, definition in LANDMARK_DEFINITIONS.items()
        ],
        "landmark_groups": {group.value: info for group, info in LANDMARK_GROUPS.items()},
        "deviation_types": [
            {
                "id": deviation_type.value,
                "name": definition.name,
                "description": definition.description,
                "views": [v.value for v in definition.views],
                "unit": definition.unit.value,
                "normal_range_min": definition.normal_range_min,
                "normal_range_max": definition.normal_range_max,
                "region": definition.region.value,
                "side_specific": definition.side_specific,
                "measurement_method": definition.measurement_method,
            }
            for deviation_type, definition in DEVIATION_DEFINITIONS.items()
        ],
        "body_regions": {region.value: info for region, info in BODY_REGIONS.items()},
    }
