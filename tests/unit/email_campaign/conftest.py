"""
Unit Test Fixtures for Email Campaign Service

Provides data fixtures for unit testing.
Uses EmailCampaignTestDataFactory from the data contract.
"""

import pytest
from unittest.mock import AsyncMock

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.email_campaign.data_contract import (
    Campaign,
    CampaignStatus,
    EmailCampaignTestDataFactory,
)


@pytest.fixture
def factory():
    """Provide test data factory"""
    return EmailCampaignTestDataFactory()


@pytest.fixture
def draft_campaign(factory) -> Campaign:
    """Draft campaign with three explicit recipients"""
    return factory.make_campaign(status=CampaignStatus.DRAFT)


@pytest.fixture
def mock_directory():
    """Directory with no accounts unless a test says otherwise"""
    directory = AsyncMock()
    directory.find_recipients.return_value = []
    directory.find_by_criteria.return_value = []
    return directory
