import unittest
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy import column, table

from phiguard.clinical_records.service import (
    create_clinical_record,
    delete_clinical_record,
    get_clinical_record,
    list_clinical_records,
    update_clinical_record,
)
from phiguard.core.codec import field_codec
from phiguard.core.crypto import FieldCipher, decode_key, generate_key
from phiguard.core.errors import RecordNotFound
from phiguard.models.ClinicalRecord import (
    CLINICAL_PHI_FIELDS,
    CreateClinicalRecordRequest,
    UpdateClinicalRecordRequest,
)
from phiguard.models.Patient import CreatePatientRequest
from phiguard.patients.service import create_patient, delete_patient
from tests.support import TemporaryDatabase
from tests.test_api_flow import PATIENT, ApiTestCase


def _request(patient_id, **overrides) -> CreateClinicalRecordRequest:
    values = {
        "patient_id": patient_id,
        "record_type": "CONSULTATION",
        "diagnosis": "Essential hypertension",
        "treatment_plan": "Lifestyle changes, recheck in 3 months",
        "medications": "Lisinopril 10mg",
        "visit_date": "2026-01-05",
        "attending_physician": "Dr. Gregory House",
    }
    values.update(overrides)
    return CreateClinicalRecordRequest(**values)


class TestClinicalRecordRequests(unittest.TestCase):

    def test_record_type_must_be_known(self):
        with self.assertRaises(ValidationError) as ctx:
            _request(uuid4(), record_type="GOSSIP")
        self.assertIn("Record type must be one of: CONSULTATION, LAB_RESULT", str(ctx.exception))

    def test_visit_date_format(self):
        with self.assertRaises(ValidationError) as ctx:
            _request(uuid4(), visit_date="05/01/2026")
        self.assertIn("Visit date must be in format YYYY-MM-DD", str(ctx.exception))

    def test_length_limits(self):
        with self.assertRaises(ValidationError):
            _request(uuid4(), diagnosis="")
        with self.assertRaises(ValidationError):
            _request(uuid4(), notes="x" * 2001)
        with self.assertRaises(ValidationError):
            UpdateClinicalRecordRequest(attending_physician="x" * 201)

    def test_changed_fields(self):
        request = UpdateClinicalRecordRequest(notes="Improving", record_type="FOLLOW_UP")
        self.assertEqual(request.changed_fields(), ["record_type", "notes"])


class TestClinicalRecordService(unittest.TestCase):

    def setUp(self):
        self.db = TemporaryDatabase()
        self.cipher = FieldCipher(decode_key(generate_key()))
        field_codec.bind(self.cipher)
        self.session = self.db.session_factory()
        self.patient = create_patient(self.session, CreatePatientRequest(
            first_name="Alice",
            last_name="Doe",
            ssn="123-45-6789",
            date_of_birth="1980-02-01",
            medical_record_number="MRN-0001",
        ))

    def tearDown(self):
        self.session.close()
        field_codec.unbind()
        self.db.close()

    def test_patient_must_exist(self):
        with self.assertRaises(RecordNotFound):
            create_clinical_record(self.session, _request(uuid4()))
        with self.assertRaises(RecordNotFound):
            list_clinical_records(self.session, uuid4())

    def test_patient_must_be_active(self):
        delete_patient(self.session, self.patient.id)
        with self.assertRaises(RecordNotFound):
            create_clinical_record(self.session, _request(self.patient.id))

    def test_protected_fields_are_stored_encrypted(self):
        record = create_clinical_record(self.session, _request(self.patient.id))

        raw = table("clinical_records", *(column(name) for name in CLINICAL_PHI_FIELDS),
                    column("attending_physician"), column("record_type"))
        with self.db.engine.connect() as connection:
            row = connection.execute(raw.select()).mappings().one()
        for name in ["diagnosis", "treatment_plan", "medications", "visit_date"]:
            self.assertTrue(self.cipher.is_envelope(row[name]), name)
        self.assertIsNone(row["notes"])
        self.assertEqual(row["attending_physician"], "Dr. Gregory House")
        self.assertEqual(row["record_type"], "CONSULTATION")

        self.session.expire_all()
        loaded = get_clinical_record(self.session, record.id)
        self.assertEqual(loaded.diagnosis, "Essential hypertension")
        self.assertEqual(loaded.visit_date, "2026-01-05")

    def test_list_filters_by_type_and_pages(self):
        for record_type in ["CONSULTATION", "LAB_RESULT", "LAB_RESULT", "IMAGING"]:
            create_clinical_record(self.session, _request(self.patient.id, record_type=record_type))
        other = create_patient(self.session, CreatePatientRequest(
            first_name="Bob",
            last_name="Roe",
            ssn="987-65-4321",
            date_of_birth="1975-06-30",
            medical_record_number="MRN-0002",
        ))
        create_clinical_record(self.session, _request(other.id))

        records, total = list_clinical_records(self.session, self.patient.id)
        self.assertEqual(total, 4)
        self.assertTrue(all(r.patient_id == self.patient.id for r in records))

        labs, total = list_clinical_records(self.session, self.patient.id, record_type="LAB_RESULT")
        self.assertEqual(total, 2)
        self.assertEqual({r.record_type for r in labs}, {"LAB_RESULT"})

        first_page, total = list_clinical_records(
            self.session, self.patient.id, page=0, size=3, sort_by="record_type", descending=False
        )
        second_page, _ = list_clinical_records(
            self.session, self.patient.id, page=1, size=3, sort_by="record_type", descending=False
        )
        self.assertEqual(total, 4)
        self.assertEqual([r.record_type for r in first_page], ["CONSULTATION", "IMAGING", "LAB_RESULT"])
        self.assertEqual([r.record_type for r in second_page], ["LAB_RESULT"])

        descending_types, _ = list_clinical_records(
            self.session, self.patient.id, sort_by="record_type", descending=True
        )
        self.assertEqual(descending_types[0].record_type, "LAB_RESULT")

    def test_unsortable_column_is_refused(self):
        with self.assertRaises(ValueError):
            list_clinical_records(self.session, self.patient.id, sort_by="diagnosis")

    def test_update_only_touches_given_fields(self):
        record = create_clinical_record(self.session, _request(self.patient.id))
        updated = update_clinical_record(
            self.session, record.id, UpdateClinicalRecordRequest(notes="BP 150/95")
        )

        self.assertEqual(updated.notes, "BP 150/95")
        self.assertEqual(updated.diagnosis, "Essential hypertension")
        self.assertIsNotNone(updated.updated_at)

    def test_soft_deleted_records_are_hidden(self):
        record = create_clinical_record(self.session, _request(self.patient.id))
        delete_clinical_record(self.session, record.id)

        with self.assertRaises(RecordNotFound) as ctx:
            get_clinical_record(self.session, record.id)
        self.assertEqual(ctx.exception.message, f"Clinical record not found with ID: {record.id}")
        self.assertEqual(list_clinical_records(self.session, self.patient.id)[1], 0)
        with self.assertRaises(RecordNotFound):
            delete_clinical_record(self.session, record.id)


class TestClinicalRecordFlow(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.doctor = self.bearer("house", "ROLE_DOCTOR")
        created = self.client.post("/patients", json=PATIENT, headers=self.doctor)
        self.assertEqual(created.status_code, 201, created.text)
        self.patient_id = created.json()["id"]

    def record_body(self, **overrides):
        body = {
            "patient_id": self.patient_id,
            "record_type": "LAB_RESULT",
            "diagnosis": "Type 2 diabetes",
            "notes": "HbA1c 8.1%",
            "visit_date": "2026-02-10",
            "attending_physician": "Dr. Gregory House",
        }
        body.update(overrides)
        return body

    def test_crud_is_audited_without_protected_values(self):
        admin = self.bearer("cuddy", "ROLE_ADMIN")

        created = self.client.post("/clinical-records", json=self.record_body(), headers=self.doctor)
        self.assertEqual(created.status_code, 201, created.text)
        record_id = created.json()["id"]
        self.assertEqual(created.json()["diagnosis"], "Type 2 diabetes")

        fetched = self.client.get(f"/clinical-records/{record_id}", headers=self.doctor)
        self.assertEqual(fetched.json()["notes"], "HbA1c 8.1%")

        listing = self.client.get(
            f"/clinical-records/patient/{self.patient_id}",
            params={"record_type": "LAB_RESULT", "page": 0, "size": 5},
            headers=self.doctor,
        )
        self.assertEqual(listing.status_code, 200, listing.text)
        self.assertEqual(listing.json()["total"], 1)

        updated = self.client.put(
            f"/clinical-records/{record_id}", json={"diagnosis": "Type 2 diabetes, controlled"},
            headers=self.doctor,
        )
        self.assertEqual(updated.json()["diagnosis"], "Type 2 diabetes, controlled")

        self.assertEqual(self.client.delete(f"/clinical-records/{record_id}", headers=admin).status_code, 204)
        self.assertEqual(self.client.get(f"/clinical-records/{record_id}", headers=self.doctor).status_code, 404)

        [created_event] = self.audit_records("CLINICAL_RECORD_CREATED")
        self.assertEqual(created_event.detail, f"Created clinical record for patient ID: {self.patient_id}")
        self.assertEqual(str(created_event.entity_id), record_id)
        self.assertEqual(created_event.performed_by, "house")

        [viewed_event] = self.audit_records("CLINICAL_RECORD_VIEWED")
        self.assertEqual(viewed_event.detail, "Viewed clinical record")

        [listed_event] = self.audit_records("CLINICAL_RECORD_LIST_VIEWED")
        self.assertEqual(
            listed_event.detail,
            f"Listed clinical records for patient ID: {self.patient_id} - page: 0, size: 5, recordType: LAB_RESULT",
        )

        [updated_event] = self.audit_records("CLINICAL_RECORD_UPDATED")
        self.assertEqual(updated_event.detail, "Updated fields: ['diagnosis']")

        [deleted_event] = self.audit_records("CLINICAL_RECORD_DELETED")
        self.assertEqual(deleted_event.performed_by, "cuddy")

        for record in self.audit_records():
            for value in ["diabetes", "HbA1c", "2026-02-10"]:
                self.assertNotIn(value, record.detail or "")

    def test_unknown_patient_is_not_found(self):
        body = self.record_body(patient_id="00000000-0000-0000-0000-000000000000")
        response = self.client.post("/clinical-records", json=body, headers=self.doctor)

        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.audit_records("CLINICAL_RECORD_CREATED"), [])

    def test_invalid_record_is_rejected_without_echo(self):
        body = self.record_body(record_type="GOSSIP", visit_date="Feb 10th, 2026")
        response = self.client.post("/clinical-records", json=body, headers=self.doctor)

        self.assertEqual(response.status_code, 400)
        details = response.json()["details"]
        self.assertIn("Record type must be one of", details["record_type"])
        self.assertIn("Visit date must be in format YYYY-MM-DD", details["visit_date"])
        self.assertNotIn("Feb 10th", response.text)
        self.assertNotIn("GOSSIP", response.text)

    def test_only_admins_delete(self):
        record_id = self.client.post(
            "/clinical-records", json=self.record_body(), headers=self.doctor
        ).json()["id"]

        self.assertEqual(self.client.delete(f"/clinical-records/{record_id}", headers=self.doctor).status_code, 403)
        self.assertEqual(self.client.get(f"/clinical-records/{record_id}", headers=self.doctor).status_code, 200)
        self.assertEqual(self.audit_records("CLINICAL_RECORD_DELETED"), [])

    def test_requires_clinical_role(self):
        visitor = self.bearer("visitor", "ROLE_USER")
        response = self.client.get(f"/clinical-records/patient/{self.patient_id}", headers=visitor)

        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.audit_records("CLINICAL_RECORD_LIST_VIEWED"), [])


if __name__ == "__main__":
    unittest.main()
