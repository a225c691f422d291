import asyncio
import math
import time

import pytest
import requests

from helpers import FakeResponse, make_page, replace_all
from safegaze.cache import cache_url_for
from safegaze.config import EngineConfig
from safegaze.engine import SafeGazeSession, SessionState, inject_engine
from safegaze.models import CandidateState, EventKind
from safegaze.page import ELEMENT_ID_ATTR, SPINNER_FOR_ATTR
from safegaze.soup_page import parse_style


def run_session(page, config, session, notifier):
    async def go():
        engine = await inject_engine(page, config, notifier, session)
        await engine.wait_idle()
        return engine

    return asyncio.run(go())


def is_blurred(tag):
    return "filter" in parse_style(tag.get("style"))


def spinners(page):
    return page.soup.find_all(attrs={SPINNER_FOR_ATTR: True})


def test_image_is_replaced_end_to_end(config, session, notifier):
    page = make_page('<html><head></head><body><div><img src="/a.jpg" width="200" height="200"></div></body></html>')
    session.post_handler = lambda body: FakeResponse(
        200,
        {
            "success": True,
            "media": [
                {
                    "original_media_url": "https://s.com/a.jpg",
                    "success": True,
                    "processed_media_url": "https://cdn.safegaze.com/m.jpg",
                }
            ],
        },
    )

    engine = run_session(page, config, session, notifier)

    img = page.soup.find("img")
    assert img["src"] == "https://cdn.safegaze.com/m.jpg"
    assert img["data-replaced"] == "true"
    assert img["from-db"] == "false"
    assert not is_blurred(img)
    assert spinners(page) == []
    assert session.gets == [cache_url_for("https://s.com/a.jpg")]
    assert len(notifier.messages(EventKind.REPLACED)) == 1
    assert engine.totals.replaced == 1
    assert engine.state is SessionState.IDLE


def test_request_carries_absolute_urls(config, session, notifier):
    page = make_page(
        '<div><img src="/wp-content/a.jpg" width="90" height="90">'
        '<img xlink:href="//img.s.com/b.png" width="90" height="90"></div>'
    )
    run_session(page, config, session, notifier)
    [body] = session.posts
    assert body["media"] == [
        {"media_url": "https://s.com/wp-content/a.jpg", "media_type": "image", "has_attachment": False, "srcAttr": "src"},
        {"media_url": "https://img.s.com/b.png", "media_type": "image", "has_attachment": False, "srcAttr": "xlink:href"},
    ]


def _items(body, success=True, processed="https://cdn.safegaze.com/m.jpg"):
    return [
        {"original_media_url": item["media_url"], "success": success, "processed_media_url": processed}
        for item in body["media"]
    ]


OUTCOMES = {
    "item_failure": lambda body: FakeResponse(200, {"success": True, "media": _items(body, success=False)}),
    "null_url": lambda body: FakeResponse(200, {"success": True, "media": _items(body, processed=None)}),
    "no_match": lambda body: FakeResponse(
        200,
        {"success": True, "media": [{"original_media_url": "https://other.com/z.jpg", "success": True, "processed_media_url": "https://cdn.safegaze.com/z.jpg"}]},
    ),
    "server_failure": lambda body: FakeResponse(200, {"success": False, "media": [], "errors": ["quota"]}),
    "http_error": lambda body: FakeResponse(502),
    "bad_json": lambda body: FakeResponse(200, invalid_json=True),
    "network_error": lambda body: requests.ConnectionError("connection reset"),
    "malformed_media": lambda body: FakeResponse(200, {"success": True, "media": 5}),
}


@pytest.mark.parametrize("outcome", sorted(OUTCOMES))
def test_every_failure_ends_unblurred(config, session, notifier, outcome):
    page = make_page(
        "<div>"
        '<img src="/a.jpg" width="100" height="100">'
        '<img data-src="/b.jpg" src="data:image/gif;base64,R0lG" width="100" height="100">'
        '<p style="background-image: url(/c.jpg); width: 100px; height: 100px"></p>'
        "</div>"
    )
    session.post_handler = OUTCOMES[outcome]

    engine = run_session(page, config, session, notifier)

    imgs = page.soup.find_all("img")
    assert [img["src"] for img in imgs] == ["https://s.com/a.jpg", "https://s.com/b.jpg"]
    for tag in imgs + [page.soup.find("p")]:
        assert not is_blurred(tag)
        assert "data-replaced" not in tag.attrs
    assert spinners(page) == []
    assert engine.totals.failed == 3
    assert notifier.messages(EventKind.REPLACED) == []
    assert set(engine.states.values()) == {CandidateState.SENT}


def test_timeout_unblurs_batch(session, notifier):
    def slow(body):
        time.sleep(0.3)
        return FakeResponse(200, {"success": True, "media": _items(body)})

    session.post_handler = slow
    config = EngineConfig(request_timeout=0.05, load_timeout=1.0)
    page = make_page('<div><img src="/a.jpg" width="100" height="100"></div>')

    engine = run_session(page, config, session, notifier)

    img = page.soup.find("img")
    assert img["src"] == "https://s.com/a.jpg"
    assert not is_blurred(img)
    assert [event.message for event in notifier.messages(EventKind.ERROR)] == ["Request timed out"]
    assert engine.totals.failed == 1


def test_broken_replacement_falls_back_to_original(config, session, notifier):
    page = make_page(
        '<div><img src="/a.jpg" width="100" height="100"></div>',
        broken=("https://cdn.safegaze.com/broken.jpg",),
    )
    session.post_handler = replace_all({"https://s.com/a.jpg": "https://cdn.safegaze.com/broken.jpg"})

    engine = run_session(page, config, session, notifier)

    img = page.soup.find("img")
    assert img["src"] == "https://s.com/a.jpg"
    assert "data-replaced" not in img.attrs
    assert not is_blurred(img)
    assert engine.totals.replaced == 0
    assert notifier.messages(EventKind.REPLACED) == []
    assert engine.states[img[ELEMENT_ID_ATTR]] is CandidateState.SENT


def test_broken_lazy_replacement_restores_data_src(config, session, notifier):
    page = make_page(
        '<div><img data-src="/b.jpg" src="data:image/gif;base64,R0lG" width="100" height="100"></div>',
        broken=("https://cdn.safegaze.com/broken.jpg",),
    )
    session.post_handler = replace_all({"https://s.com/b.jpg": "https://cdn.safegaze.com/broken.jpg"})

    run_session(page, config, session, notifier)

    img = page.soup.find("img")
    assert img["src"] == "https://s.com/b.jpg"
    assert img["data-src"] == "/b.jpg"
    assert not is_blurred(img)


def test_broken_cached_replacement_is_not_reported(config, session, notifier):
    cached = cache_url_for("https://s.com/a.jpg")
    page = make_page('<div><img src="/a.jpg" width="200" height="200"></div>', broken=(cached,))
    session.get_responses[cached] = FakeResponse(200)

    engine = run_session(page, config, session, notifier)

    img = page.soup.find("img")
    assert img["src"] == "https://s.com/a.jpg"
    assert not is_blurred(img)
    assert session.posts == []
    assert engine.totals.cached == 1
    assert engine.totals.replaced == 0
    assert notifier.messages(EventKind.REPLACED) == []
    assert engine.states[img[ELEMENT_ID_ATTR]] is CandidateState.SENT


def test_unexpected_error_still_unblurs(config, session, notifier):
    page = make_page(
        '<div><img src="/a.jpg" width="100" height="100">'
        '<img src="/b.jpg" width="100" height="100"></div>'
    )

    async def explode(candidates):
        raise RuntimeError("boom")

    async def go():
        engine = SafeGazeSession(page, config, notifier, session)
        engine.dispatcher.dispatch = explode
        await engine.visual.install()
        report = await engine.scan()
        return engine, report

    engine, report = asyncio.run(go())

    assert report.found == 2
    for img in page.soup.find_all("img"):
        assert not is_blurred(img)
    assert spinners(page) == []
    assert set(engine.states.values()) == {CandidateState.SENT}
    assert engine.state is SessionState.IDLE


@pytest.mark.parametrize("count", [0, 1, 4, 5, 9])
def test_batches_hold_at_most_four(config, session, notifier, count):
    images = "".join(f'<img src="/{i}.jpg" width="50" height="50">' for i in range(count))
    page = make_page(f"<div>{images}</div>")

    engine = run_session(page, config, session, notifier)

    assert len(session.posts) == math.ceil(count / 4)
    assert all(1 <= len(body["media"]) <= 4 for body in session.posts)
    assert sum(len(body["media"]) for body in session.posts) == count
    assert engine.totals.batches == len(session.posts)


def test_results_are_matched_by_url_not_position(config, session, notifier):
    page = make_page("<div>" + "".join(f'<img src="/{i}.jpg" width="50" height="50">' for i in range(4)) + "</div>")

    def reversed_reply(body):
        media = [
            {
                "original_media_url": item["media_url"],
                "success": True,
                "processed_media_url": item["media_url"].replace("https://s.com/", "https://cdn.safegaze.com/m"),
            }
            for item in reversed(body["media"])
        ]
        return FakeResponse(200, {"success": True, "media": media})

    session.post_handler = reversed_reply
    run_session(page, config, session, notifier)

    assert [img["src"] for img in page.soup.find_all("img")] == [
        f"https://cdn.safegaze.com/m{i}.jpg" for i in range(4)
    ]


def test_partial_url_match(config, session, notifier):
    page = make_page('<div><img src="/a.jpg?utm_source=feed" width="50" height="50"></div>')
    session.post_handler = lambda body: FakeResponse(
        200,
        {"success": True, "media": [{"original_media_url": "https://s.com/a.jpg", "success": True, "processed_media_url": "https://cdn.safegaze.com/a.jpg"}]},
    )
    run_session(page, config, session, notifier)
    assert page.soup.find("img")["src"] == "https://cdn.safegaze.com/a.jpg"


def test_small_image_blurred_but_never_sent(config, session, notifier):
    page = make_page(
        '<div><img id="big" src="/big.jpg" width="200" height="200">'
        '<img id="tiny" src="/tiny.jpg" width="30" height="30"></div>'
    )
    seen = {}

    def reply(body):
        seen["tiny_blurred"] = is_blurred(page.soup.find(id="tiny"))
        return replace_all({})(body)

    session.post_handler = reply
    engine = run_session(page, config, session, notifier)

    assert seen["tiny_blurred"] is True
    sent = [item["media_url"] for body in session.posts for item in body["media"]]
    assert sent == ["https://s.com/big.jpg"]
    tiny = page.soup.find(id="tiny")
    assert not is_blurred(tiny)
    assert tiny["src"] == "/tiny.jpg"
    assert engine.totals.skipped_small == 1


def test_zero_sized_pixel_is_never_sent(config, session, notifier):
    page = make_page(
        '<div><img src="/big.jpg" width="200" height="200">'
        '<img id="pixel" src="/pixel.gif" width="0" height="0"></div>'
    )

    engine = run_session(page, config, session, notifier)

    sent = [item["media_url"] for body in session.posts for item in body["media"]]
    assert sent == ["https://s.com/big.jpg"]
    pixel = page.soup.find(id="pixel")
    assert pixel["src"] == "/pixel.gif"
    assert not is_blurred(pixel)
    assert engine.totals.skipped_small == 1


def test_cached_image_skips_classification(config, session, notifier):
    page = make_page('<div><img src="/a.jpg" width="200" height="200"><img src="/b.jpg" width="200" height="200"></div>')
    cached = cache_url_for("https://s.com/a.jpg")
    session.get_responses[cached] = FakeResponse(200)

    engine = run_session(page, config, session, notifier)

    first, second = page.soup.find_all("img")
    assert first["src"] == cached
    assert first["from-db"] == "true"
    assert not is_blurred(first)
    assert [item["media_url"] for item in session.posts[0]["media"]] == ["https://s.com/b.jpg"]
    assert engine.totals.cached == 1
    assert engine.totals.replaced == 1
    assert len(notifier.messages(EventKind.REPLACED)) == 1


def test_cache_can_be_turned_off(session, notifier):
    page = make_page('<div><img src="/a.jpg" width="200" height="200"></div>')
    run_session(page, EngineConfig(use_cache=False), session, notifier)
    assert session.gets == []
    assert len(session.posts) == 1


def test_background_image_is_replaced(config, session, notifier):
    page = make_page('<div><section style="background-image: url(\'/hero.jpg\'); width: 400px; height: 200px"></section></div>')
    session.post_handler = replace_all({"https://s.com/hero.jpg": "https://cdn.safegaze.com/hero.jpg"})

    run_session(page, config, session, notifier)

    section = page.soup.find("section")
    styles = parse_style(section["style"])
    assert styles["background-image"] == 'url("https://cdn.safegaze.com/hero.jpg")'
    assert "filter" not in styles
    assert section["data-replaced"] == "true"


def test_picture_sources_are_removed(config, session, notifier):
    page = make_page(
        '<picture><source srcset="/a.webp" type="image/webp">'
        '<img src="/a.jpg" width="100" height="100"></picture>'
    )
    run_session(page, config, session, notifier)
    assert page.soup.find("source") is None


def test_rescan_and_scroll_only_pick_up_new_elements(config, session, notifier):
    page = make_page('<div id="feed"><img src="/a.jpg" width="100" height="100"></div>')

    async def go():
        engine = await inject_engine(page, config, notifier, session)
        again = await engine.scan()
        new_img = page.soup.new_tag("img", src="/b.jpg", width="100", height="100")
        page.soup.find(id="feed").append(new_img)
        await page.scroll()
        await page.scroll()
        await engine.wait_idle()
        return engine, again

    engine, again = asyncio.run(go())

    assert again.found == 0
    sent = [item["media_url"] for body in session.posts for item in body["media"]]
    assert sent == ["https://s.com/a.jpg", "https://s.com/b.jpg"]
    assert len(engine.states) == 2


def test_overlapping_scans_claim_each_element_once(config, session, notifier):
    page = make_page("<div>" + "".join(f'<img src="/{i}.jpg" width="50" height="50">' for i in range(6)) + "</div>")

    async def go():
        engine = SafeGazeSession(page, config, notifier, session)
        await engine.visual.install()
        await asyncio.gather(engine.scan(), engine.scan(), engine.scan())
        return engine

    asyncio.run(go())
    sent = [item["media_url"] for body in session.posts for item in body["media"]]
    assert sorted(sent) == sorted(f"https://s.com/{i}.jpg" for i in range(6))


def test_already_marked_page_is_left_alone(config, session, notifier):
    page = make_page('<div><img src="https://cdn.safegaze.com/m.jpg" data-replaced="true" width="100" height="100"></div>')
    run_session(page, config, session, notifier)
    assert session.posts == []
    assert session.gets == []


def test_disabled_engine_is_not_injected(session, notifier):
    html = '<html><head></head><body><div><img src="/a.jpg" width="100" height="100"></div></body></html>'
    page = make_page(html)
    engine = asyncio.run(inject_engine(page, EngineConfig(enabled=False), notifier, session))
    assert engine is None
    assert page.soup.find("style") is None
    assert session.posts == [] and notifier.events == []


def test_reset_forgets_claims_and_notifies(config, session, notifier):
    page = make_page('<div><img src="/a.jpg" width="100" height="100"></div>')
    engine = run_session(page, config, session, notifier)
    engine.reset()
    assert engine.states == {}
    assert notifier.messages(EventKind.PAGE_REFRESH)


def test_image_without_container_is_still_unblurred(config, session, notifier):
    page = make_page('<img src="/a.jpg" width="100" height="100">')
    session.post_handler = replace_all({"https://s.com/a.jpg": "https://cdn.safegaze.com/a.jpg"})
    run_session(page, config, session, notifier)
    img = page.soup.find("img")
    assert img["src"] == "https://cdn.safegaze.com/a.jpg"
    assert not is_blurred(img)
