import json
import unittest
from types import SimpleNamespace

from core.candidate_profile import (
    candidate_to_dict,
    external_id_for,
    prepare_candidate_for_scoring,
    profile_to_candidate_fields
)
from tests.mocks.sourcing_mocks import make_profile


class TestProfileMapping(unittest.TestCase):
    def test_external_id_prefers_profile_id(self):
        self.assertEqual(external_id_for(make_profile(1)), "profile-1")

    def test_external_id_falls_back_to_linkedin_url(self):
        profile = make_profile(1, id=None)
        self.assertEqual(external_id_for(profile), "https://www.linkedin.com/in/candidate-1")

    def test_profile_without_identity(self):
        external_id, _fields = profile_to_candidate_fields(make_profile(1, id=None, linkedinUrl=None))
        self.assertIsNone(external_id)

    def test_fields(self):
        external_id, fields = profile_to_candidate_fields(make_profile(3))
        self.assertEqual(external_id, "profile-3")
        self.assertEqual(fields['full_name'], "Candidate 3")
        self.assertEqual(fields['location_text'], "Berlin, Germany")
        self.assertEqual(fields['position'], "Staff Engineer")
        self.assertEqual(fields['raw_profile']['id'], "profile-3")

    def test_null_bytes_removed(self):
        _external_id, fields = profile_to_candidate_fields(make_profile(1, headline="Eng\x00ineer"))
        self.assertEqual(fields['headline'], "Engineer")


class TestScoringProfile(unittest.TestCase):
    def test_candidate_to_dict_is_camel_case(self):
        candidate = SimpleNamespace(
            id="c1", external_id="p1", linkedin_url="u", full_name="Ada", headline="h", summary="s",
            position="p", location=None, location_text="Berlin", experiences=[], educations=[], skills=[]
        )
        data = candidate_to_dict(candidate)
        self.assertEqual(data['externalId'], "p1")
        self.assertEqual(data['locationText'], "Berlin")

    def test_prepare_accepts_json_strings(self):
        data = {
            "headline": "Engineer",
            "summary": "About me",
            "experiences": json.dumps([{"title": "Dev", "startDate": "2020", "companyName": "X"}]),
            "educations": [{"schoolName": "MIT", "degree": "BSc"}],
            "skills": json.dumps(["python"]),
            "locationText": "Paris",
        }
        profile = prepare_candidate_for_scoring(data)
        self.assertEqual(profile['about'], "About me")
        self.assertEqual(profile['experiences'][0]['position'], "Dev")
        self.assertNotIn('companyName', profile['experiences'][0])
        self.assertEqual(profile['educations'][0]['schoolName'], "MIT")
        self.assertEqual(profile['skills'], ["python"])
        self.assertEqual(profile['location_text'], "Paris")

    def test_prepare_tolerates_missing_fields(self):
        profile = prepare_candidate_for_scoring({})
        self.assertEqual(profile['experiences'], [])
        self.assertEqual(profile['educations'], [])


if __name__ == '__main__':
    unittest.main()
