from enum import Enum


class CaseField(str, Enum):
    """Canonical case-record fields an uploaded column can be mapped onto."""

    patient_name = "patientName"
    species = "species"
    breed = "breed"
    sex = "sex"
    age_years = "ageYears"
    age_months = "ageMonths"
    diagnosis_date = "diagnosisDate"
    tumour_type_custom = "tumourTypeCustom"
    anatomical_site_custom = "anatomicalSiteCustom"
    laterality = "laterality"
    stage = "stage"
    diagnosis_method = "diagnosisMethod"
    treatment_plan = "treatmentPlan"
    treatment_start = "treatmentStart"
    notes = "notes"

    @classmethod
    def parse(cls, value: str) -> "CaseField | None":
        try:
            return cls(value)
        except ValueError:
            return None


REQUIRED_FIELDS: frozenset[CaseField] = frozenset(
    {CaseField.species, CaseField.breed, CaseField.diagnosis_date}
)

FIELD_LABELS: dict[CaseField, str] = {
    CaseField.patient_name: "Patient Name",
    CaseField.species: "Species",
    CaseField.breed: "Breed",
    CaseField.sex: "Sex",
    CaseField.age_years: "Age (Years)",
    CaseField.age_months: "Age (Months)",
    CaseField.diagnosis_date: "Diagnosis Date",
    CaseField.tumour_type_custom: "Tumour Type",
    CaseField.anatomical_site_custom: "Anatomical Site",
    CaseField.laterality: "Laterality",
    CaseField.stage: "Stage",
    CaseField.diagnosis_method: "Diagnosis Method",
    CaseField.treatment_plan: "Treatment Plan",
    CaseField.treatment_start: "Treatment Start Date",
    CaseField.notes: "Notes",
}

# snake_case column names of the downloadable CSV template
TEMPLATE_COLUMNS: dict[str, CaseField] = {
    "patient_name": CaseField.patient_name,
    "species": CaseField.species,
    "breed": CaseField.breed,
    "sex": CaseField.sex,
    "age_years": CaseField.age_years,
    "age_months": CaseField.age_months,
    "diagnosis_date": CaseField.diagnosis_date,
    "tumour_type": CaseField.tumour_type_custom,
    "anatomical_site": CaseField.anatomical_site_custom,
    "laterality": CaseField.laterality,
    "stage": CaseField.stage,
    "diagnosis_method": CaseField.diagnosis_method,
    "treatment_plan": CaseField.treatment_plan,
    "treatment_start": CaseField.treatment_start,
    "notes": CaseField.notes,
}
