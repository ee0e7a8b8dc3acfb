"""
Mapping between sourcing API profiles, stored candidates and the profile
shape the evaluate endpoint expects.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from core.utils import strip_null_bytes

logger = logging.getLogger(__name__)


def _maybe_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def _current_position(experiences: Any) -> Optional[str]:
    if not isinstance(experiences, list):
        return None
    for exp in experiences:
        if not isinstance(exp, dict):
            continue
        end = exp.get('endDate')
        end_text = end.get('text') if isinstance(end, dict) else end
        if not end or (isinstance(end_text, str) and end_text.lower() == 'present'):
            return exp.get('position') or exp.get('title')
    return None


def external_id_for(profile: Dict[str, Any]) -> Optional[str]:
    """Stable provider identity: profile id first, then the LinkedIn URL."""
    return strip_null_bytes(profile.get('id')) or strip_null_bytes(profile.get('linkedinUrl'))


def profile_to_candidate_fields(profile: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    """
    Convert one sourcing API profile into ``Candidate`` column values.

    Returns:
        (external_id, fields). external_id is None for profiles that carry
        neither an id nor a LinkedIn URL; callers skip those.
    """
    raw = profile.get('raw_data') or {}
    experiences = raw.get('experience') or profile.get('experiences')
    educations = raw.get('education') or profile.get('educations')
    location = profile.get('location')
    location_text = profile.get('location_text')
    if not location_text and isinstance(location, dict):
        location_text = location.get('linkedinText')

    fields = {
        'linkedin_url': strip_null_bytes(profile.get('linkedinUrl')),
        'full_name': strip_null_bytes(profile.get('fullName')),
        'headline': strip_null_bytes(profile.get('headline')),
        'summary': strip_null_bytes(profile.get('summary') or raw.get('about')),
        'position': strip_null_bytes(profile.get('position') or _current_position(experiences)),
        'location': location,
        'location_text': strip_null_bytes(location_text),
        'experiences': experiences,
        'educations': educations,
        'skills': profile.get('skills'),
        'raw_profile': profile,
    }
    return external_id_for(profile), fields


def candidate_to_dict(candidate: Any) -> Dict[str, Any]:
    """Plain dict of the stored profile, as carried in scoring job messages."""
    return {
        'id': candidate.id,
        'externalId': candidate.external_id,
        'linkedinUrl': candidate.linkedin_url,
        'fullName': candidate.full_name,
        'headline': candidate.headline,
        'summary': candidate.summary,
        'position': candidate.position,
        'location': candidate.location,
        'locationText': candidate.location_text,
        'experiences': candidate.experiences,
        'educations': candidate.educations,
        'skills': candidate.skills,
    }


def _filter_experiences(experiences: Any) -> List[Dict[str, Any]]:
    if not isinstance(experiences, list):
        return []
    return [
        {
            'position': exp.get('position') or exp.get('title'),
            'skills': exp.get('skills'),
            'startDate': exp.get('startDate'),
            'endDate': exp.get('endDate'),
            'isCurrent': exp.get('isCurrent'),
            'description': exp.get('description'),
        }
        for exp in experiences if isinstance(exp, dict)
    ]


def _filter_educations(educations: Any) -> List[Dict[str, Any]]:
    if not isinstance(educations, list):
        return []
    return [
        {
            'schoolName': edu.get('school') or edu.get('schoolName'),
            'degree': edu.get('degree'),
            'skills': edu.get('skills'),
            'fieldOfStudy': edu.get('fieldOfStudy'),
            'startDate': edu.get('startDate'),
            'endDate': edu.get('endDate'),
        }
        for edu in educations if isinstance(edu, dict)
    ]


def prepare_candidate_for_scoring(candidate_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reduce a candidate to the fields the evaluate endpoint scores on.

    Accepts either camelCase (job message) or snake_case keys, and JSON
    strings in place of lists for the structured fields.
    """
    return {
        'headline': candidate_data.get('headline'),
        'about': candidate_data.get('summary'),
        'summary': candidate_data.get('summary'),
        'location': _maybe_json(candidate_data.get('location')),
        'location_text': candidate_data.get('locationText') or candidate_data.get('location_text'),
        'position': candidate_data.get('position'),
        'experiences': _filter_experiences(_maybe_json(candidate_data.get('experiences'))),
        'educations': _filter_educations(_maybe_json(candidate_data.get('educations'))),
        'skills': _maybe_json(candidate_data.get('skills')),
    }
