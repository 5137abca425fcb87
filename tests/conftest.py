"""
Shared fixtures: reference tables from the packaged CSVs and small
synthetic register records.
"""

import pytest

from habitat_units.reference import load_reference_tables


@pytest.fixture(scope="session")
def tables():
    return load_reference_tables()


@pytest.fixture
def site_record():
    """A complete register record with one allocation"""
    return {
        "referenceNumber": "BGS-010124001",
        "siteSize": 12.5,
        "responsibleBodies": [{"name": "Somerset Council"}],
        "latitude": 51.0,
        "longitude": -2.9,
        "lpaArea": {"name": "Somerset"},
        "nationalCharacterArea": {"name": "Somerset Levels and Moors"},
        "lsoa": {"name": "Somerset 001A", "IMDDecile": 3, "IMDScore": 30.5},
        "habitats": {
            "areas": [
                {"type": "Grassland - Modified grassland", "condition": "Poor", "size": 10},
            ],
            "hedgerows": [
                {"type": "Native hedgerow", "condition": "Poor", "size": 0.5},
            ],
        },
        "improvements": {
            "areas": [
                {"type": "Grassland - Modified grassland", "condition": "Good", "size": 6,
                 "interventionType": "Enhancement"},
                {"type": "Grassland - Other neutral grassland", "condition": "Good", "size": 4,
                 "interventionType": "Creation"},
            ],
            "hedgerows": [
                {"type": "Native hedgerow", "condition": "Good", "size": 0.5,
                 "interventionType": "Enhancement"},
            ],
        },
        "allocations": [
            {
                "planningReference": "23/01234/FUL",
                "localPlanningAuthority": "Somerset",
                "distance": 12.0,
                "areaUnits": 1.5,
                "hedgerowUnits": 0.2,
                "watercourseUnits": 0,
                "lsoa": {"IMDDecile": 7, "IMDScore": 12.1},
                "habitats": {
                    "areas": [
                        {"type": "Grassland - Other neutral grassland", "condition": "Good", "size": 1},
                    ],
                },
            },
        ],
    }
