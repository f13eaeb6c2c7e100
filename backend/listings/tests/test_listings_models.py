import pytest
from django.core.exceptions import ValidationError

from listings.models import Listing

pytestmark = pytest.mark.django_db


def test_slug_is_generated(owner_user):
    listing = Listing.objects.create(owner=owner_user, title="Canoe for Two")
    assert listing.slug.startswith("canoe-for-two-")


def test_short_title_is_invalid(owner_user):
    with pytest.raises(ValidationError):
        Listing(owner=owner_user, title="ab").clean()
