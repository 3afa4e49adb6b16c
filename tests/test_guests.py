from types import SimpleNamespace

import pytest

from hotel_loyalty.services.guests import GuestDisplayInfo, format_guest_name


@pytest.mark.parametrize(
    ("info", "expected"),
    [
        (GuestDisplayInfo(first_name="Ana", last_name="Souza"), "Ana Souza"),
        (GuestDisplayInfo(first_name="  Ana ", last_name=" "), "Ana"),
        (GuestDisplayInfo(last_name="Souza", email="ana@example.com"), "Souza"),
        (GuestDisplayInfo(email="ana.souza@example.com"), "ana.souza"),
        (GuestDisplayInfo(email="   "), "Guest"),
        (GuestDisplayInfo(), "Guest"),
        (None, "Guest"),
    ],
)
def test_format_guest_name(info, expected) -> None:
    assert format_guest_name(info) == expected


def test_display_info_from_member() -> None:
    member = SimpleNamespace(guest_first_name="Kenji", guest_last_name=None, guest_email="kenji@example.com")

    info = GuestDisplayInfo.from_member(member)

    assert info == GuestDisplayInfo(first_name="Kenji", email="kenji@example.com")
    assert info.display_name == "Kenji"
