from typing import Dict, List, Optional

from pawsy.models import BreedRisk


def _risk(name: str, age_min: float, age_max: float, severity: str, description: str) -> BreedRisk:
    return BreedRisk(name=name, age_min=age_min, age_max=age_max, severity=severity, description=description)


# Typical onset windows (years) for conditions each breed is predisposed to.
BREED_HEALTH_RISKS: Dict[str, List[BreedRisk]] = {
    "Labrador Retriever": [
        _risk("Hip Dysplasia", 1, 6, "high", "Abnormal hip joint development causing pain and mobility issues."),
        _risk("Elbow Dysplasia", 1, 4, "moderate", "Abnormal elbow joint development leading to lameness."),
        _risk("Obesity", 2, 14, "moderate", "Prone to weight gain which stresses joints and organs."),
        _risk("Progressive Retinal Atrophy", 3, 9, "moderate", "Gradual vision loss from retinal degeneration."),
    ],
    "Golden Retriever": [
        _risk("Hip Dysplasia", 1, 6, "high", "Abnormal hip joint development causing pain and mobility issues."),
        _risk("Cancer", 6, 14, "high", "High predisposition to hemangiosarcoma and lymphoma."),
        _risk("Skin Allergies", 1, 10, "moderate", "Atopic dermatitis and environmental allergies causing itching."),
        _risk("Heart Disease", 5, 12, "high", "Subvalvular aortic stenosis and other cardiac conditions."),
    ],
    "German Shepherd": [
        _risk("Hip Dysplasia", 1, 7, "high", "Abnormal hip joint development, very common in the breed."),
        _risk("Degenerative Myelopathy", 7, 14, "high", "Progressive spinal cord disease causing hind limb weakness."),
        _risk("Bloat (GDV)", 2, 12, "high", "Life-threatening stomach dilation and torsion."),
        _risk("Exocrine Pancreatic Insufficiency", 1, 5, "moderate", "Inability to properly digest food due to pancreatic enzyme deficiency."),
    ],
    "French Bulldog": [
        _risk("Brachycephalic Obstructive Airway Syndrome", 0, 14, "high", "Breathing difficulties due to shortened skull structure."),
        _risk("Intervertebral Disc Disease", 3, 10, "high", "Spinal disc herniation causing pain and possible paralysis."),
        _risk("Skin Fold Dermatitis", 0, 14, "moderate", "Skin infections in facial and body folds."),
        _risk("Heat Sensitivity", 0, 14, "moderate", "High risk of overheating due to compromised airways."),
    ],
    "Poodle": [
        _risk("Addison's Disease", 2, 9, "high", "Adrenal gland insufficiency causing lethargy and vomiting."),
        _risk("Epilepsy", 1, 5, "moderate", "Idiopathic seizures requiring long-term management."),
        _risk("Progressive Retinal Atrophy", 3, 8, "moderate", "Gradual vision loss from retinal degeneration."),
        _risk("Bloat (GDV)", 4, 12, "high", "Life-threatening stomach dilation, especially in Standard Poodles."),
    ],
    "Beagle": [
        _risk("Epilepsy", 1, 6, "moderate", "Breed-predisposed idiopathic seizures."),
        _risk("Hypothyroidism", 4, 10, "low", "Underactive thyroid causing weight gain and lethargy."),
        _risk("Intervertebral Disc Disease", 3, 8, "moderate", "Spinal disc issues due to body proportions."),
        _risk("Cherry Eye", 0, 3, "low", "Prolapse of the third eyelid gland."),
    ],
    "Bulldog": [
        _risk("Brachycephalic Obstructive Airway Syndrome", 0, 12, "high", "Severe breathing difficulties due to flat face structure."),
        _risk("Hip Dysplasia", 1, 8, "high", "Very high incidence of hip joint malformation."),
        _risk("Skin Fold Dermatitis", 0, 12, "moderate", "Chronic skin infections in deep facial and body folds."),
        _risk("Cherry Eye", 0, 3, "low", "Prolapse of the third eyelid gland."),
    ],
    "Rottweiler": [
        _risk("Osteosarcoma", 5, 10, "high", "Aggressive bone cancer with high breed predisposition."),
        _risk("Hip Dysplasia", 1, 6, "high", "Common joint malformation in large breeds."),
        _risk("Aortic Stenosis", 0, 4, "high", "Narrowing of the aortic valve causing heart strain."),
        _risk("Cruciate Ligament Rupture", 2, 8, "moderate", "Knee ligament tear common in heavy breeds."),
    ],
    "Dachshund": [
        _risk("Intervertebral Disc Disease", 3, 8, "high", "Very high risk of spinal disc herniation due to long body."),
        _risk("Obesity", 2, 14, "moderate", "Weight gain worsens back problems significantly."),
        _risk("Patellar Luxation", 1, 6, "moderate", "Kneecap dislocation causing intermittent lameness."),
        _risk("Progressive Retinal Atrophy", 4, 10, "moderate", "Gradual vision loss from retinal degeneration."),
    ],
    "Siberian Husky": [
        _risk("Cataracts", 1, 6, "moderate", "Hereditary juvenile cataracts common in the breed."),
        _risk("Hip Dysplasia", 1, 7, "moderate", "Hip joint malformation, moderate incidence."),
        _risk("Hypothyroidism", 3, 8, "low", "Underactive thyroid causing coat and energy changes."),
        _risk("Corneal Dystrophy", 2, 6, "low", "Abnormal corneal deposits affecting vision."),
    ],
    "Boxer": [
        _risk("Cancer", 5, 12, "high", "High rates of mast cell tumors and lymphoma."),
        _risk("Aortic Stenosis", 0, 5, "high", "Congenital heart defect narrowing the aortic valve."),
        _risk("Boxer Cardiomyopathy", 2, 10, "high", "Breed-specific arrhythmogenic right ventricular cardiomyopathy."),
        _risk("Hip Dysplasia", 1, 6, "moderate", "Moderate incidence of hip joint malformation."),
    ],
    "Great Dane": [
        _risk("Bloat (GDV)", 1, 10, "high", "Highest risk breed for life-threatening stomach torsion."),
        _risk("Dilated Cardiomyopathy", 3, 8, "high", "Enlarged heart leading to heart failure."),
        _risk("Hip Dysplasia", 1, 5, "high", "Joint malformation aggravated by giant size."),
        _risk("Osteosarcoma", 5, 10, "high", "Aggressive bone cancer common in giant breeds."),
    ],
    "Doberman Pinscher": [
        _risk("Dilated Cardiomyopathy", 3, 10, "high", "Very high breed predisposition to enlarged heart."),
        _risk("Von Willebrand's Disease", 0, 14, "moderate", "Inherited bleeding disorder affecting clotting."),
        _risk("Wobbler Syndrome", 3, 9, "high", "Cervical vertebral instability causing gait abnormalities."),
        _risk("Hip Dysplasia", 1, 6, "moderate", "Moderate incidence of hip joint malformation."),
    ],
    "Bernese Mountain Dog": [
        _risk("Histiocytic Sarcoma", 4, 10, "high", "Aggressive cancer with very high breed predisposition."),
        _risk("Hip Dysplasia", 1, 5, "high", "Joint malformation common in large breeds."),
        _risk("Elbow Dysplasia", 1, 4, "moderate", "Abnormal elbow joint development causing lameness."),
        _risk("Bloat (GDV)", 2, 10, "high", "Large deep-chested breed at elevated risk."),
    ],
    "Cavalier King Charles Spaniel": [
        _risk("Mitral Valve Disease", 1, 10, "high", "Nearly universal heart valve degeneration in the breed."),
        _risk("Syringomyelia", 1, 6, "high", "Fluid-filled cavities in spinal cord from skull malformation."),
        _risk("Patellar Luxation", 1, 6, "moderate", "Kneecap dislocation causing intermittent lameness."),
        _risk("Keratoconjunctivitis Sicca", 2, 8, "low", "Dry eye syndrome requiring ongoing treatment."),
    ],
}

BREED_ALIASES: Dict[str, List[str]] = {
    "Labrador Retriever": ["labrador", "labradors", "labrador retrievers", "lab", "labs"],
    "Golden Retriever": ["golden", "goldens", "golden retrievers"],
    "German Shepherd": ["german shepherd dog", "gsd", "alsatian"],
    "French Bulldog": ["frenchie", "frenchies", "french bulldogs"],
    "Poodle": ["poodles", "standard poodle", "miniature poodle", "toy poodle"],
    "Beagle": ["beagles"],
    "Bulldog": ["english bulldog", "british bulldog"],
    "Rottweiler": ["rottie", "rotties", "rottweilers"],
    "Dachshund": ["dachshunds", "sausage dog", "doxie"],
    "Siberian Husky": ["husky", "huskies"],
    "Boxer": ["boxers"],
    "Great Dane": ["great danes"],
    "Doberman Pinscher": ["doberman", "dobermann", "dobie"],
    "Bernese Mountain Dog": ["bernese", "berner"],
    "Cavalier King Charles Spaniel": [
        "cavalier king charles",
        "king charles spaniel",
        "king charles cavalier",
        "cavalier",
        "cavaliers",
    ],
}


def _normalize(text: str) -> str:
    return " ".join(text.lower().replace("-", " ").split())


def match_breed(breed_name: Optional[str]) -> Optional[str]:
    if not breed_name or not isinstance(breed_name, str):
        return None
    normalized = _normalize(breed_name)
    for breed, aliases in BREED_ALIASES.items():
        if normalized == _normalize(breed) or normalized in aliases:
            return breed
    return None


def lookup(breed_name: Optional[str]) -> List[BreedRisk]:
    """Breed risks for ``breed_name``; unknown breeds yield an empty list."""
    breed = match_breed(breed_name)
    if breed is None:
        return []
    return list(BREED_HEALTH_RISKS.get(breed, []))
