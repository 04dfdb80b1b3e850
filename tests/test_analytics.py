import pytest

from dealhub.errors import ValidationError
from dealhub.store.analytics import AnalyticsRecorder


def test_click_bumps_deal_clicks(engine, deals, make_deal):
    recorder = AnalyticsRecorder(engine)
    deal_id = make_deal("Clicky")
    recorder.record(deal_id, "view", ip_address="1.2.3.4", user_agent="pytest")
    recorder.record(deal_id, "click")
    recorder.record(deal_id, "copy_code")
    assert deals.get(deal_id)["clicks"] == 1


def test_unknown_action_rejected(engine):
    with pytest.raises(ValidationError):
        AnalyticsRecorder(engine).record(1, "purchase")


def test_recent_and_stats(seeded_engine):
    recorder = AnalyticsRecorder(seeded_engine)
    recorder.record(1, "view")
    recorder.record(1, "click")
    recorder.record(99, "view")

    events = recorder.recent()
    assert [event["action"] for event in events] == ["view", "click", "view"]
    assert events[0]["software_name"] is None
    assert events[1]["software_name"] == "Alpha"
    assert recorder.stats() == {"totalDeals": 4, "totalCategories": 2, "totalViews": 2, "totalClicks": 1}
