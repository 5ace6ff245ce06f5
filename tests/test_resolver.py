import asyncio

import pytest

from fakes import HOST_URL, SHIM_URL, FakeHost, ctx, fast_config, per_context
from framesnap import routines
from framesnap.config import TrustedOrigin
from framesnap.enumerator import list_shim_references, scan_candidate_frames
from framesnap.errors import ResolutionTimeout
from framesnap.exporter import NO_APP_FRAME_MESSAGE, Exporter
from framesnap.host import HostError
from framesnap.models import ResolutionMethod, ShimReference
from framesnap.resolver import FrameResolver, describe_failure, match_direct

TRUSTED = TrustedOrigin()
OTHER_TRUSTED = "https://zzz.scf.usercontent.goog/generative-ui-response/other"


def shim(src, area):
    return ShimReference(src=src, origin="", origin_host="", area=area)


def resolver(host):
    return FrameResolver(host, TRUSTED, interval=0.01, timeout=0.05)


def test_list_shim_references_filters_and_sorts():
    host = FakeHost(
        handlers={
            routines.LIST_EMBEDS: [
                {"src": "https://ads.example.com/banner", "area": 5000},
                {"src": SHIM_URL, "area": 100},
                {"src": OTHER_TRUSTED, "area": 400},
                {"src": "", "area": 900},
            ]
        }
    )
    refs = asyncio.run(list_shim_references(host, TRUSTED))
    assert [ref.src for ref in refs] == [OTHER_TRUSTED, SHIM_URL]
    assert refs[0].origin_host == "zzz.scf.usercontent.goog"


def test_direct_match_prefers_largest_frame():
    contexts = [
        ctx(0, HOST_URL, None),
        ctx(1, SHIM_URL + "#state"),
        ctx(2, OTHER_TRUSTED),
    ]
    refs = [shim(SHIM_URL, 100), shim(OTHER_TRUSTED, 800)]
    assert match_direct(contexts, refs, TRUSTED).context_id == 2


def test_direct_match_ignores_untrusted_and_hidden_contexts():
    contexts = [ctx(0, HOST_URL, None), ctx(1, ""), ctx(2, "https://ads.example.com/x")]
    assert match_direct(contexts, [shim(SHIM_URL, 100)], TRUSTED) is None


def test_direct_match_wins_over_probe():
    host = FakeHost(
        contexts=[ctx(0, HOST_URL, None), ctx(1, SHIM_URL), ctx(2, "")],
        handlers={
            routines.PROBE: per_context(
                {2: {"href": OTHER_TRUSTED, "elementCount": 9999, "readyState": "complete"}}
            )
        },
    )
    result = asyncio.run(resolver(host).resolve([shim(SHIM_URL, 100)]))
    assert result.method is ResolutionMethod.DIRECT_MATCH
    assert result.context_id == 1
    assert host.count(routines.PROBE) == 0


def test_probe_prefers_key_match_over_element_count():
    host = FakeHost(
        contexts=[ctx(0, HOST_URL, None), ctx(3, ""), ctx(4, "")],
        handlers={
            routines.PROBE: per_context(
                {
                    3: {"href": SHIM_URL, "elementCount": 5, "readyState": "complete"},
                    4: {"href": OTHER_TRUSTED, "elementCount": 500, "readyState": "complete"},
                }
            )
        },
    )
    result = asyncio.run(resolver(host).resolve([shim(SHIM_URL, 100)]))
    assert result.method is ResolutionMethod.PROBE
    assert result.context_id == 3


def test_probe_falls_back_to_element_count_and_skips_detached():
    host = FakeHost(
        contexts=[ctx(0, HOST_URL, None), ctx(3, ""), ctx(4, ""), ctx(5, "")],
        handlers={
            routines.PROBE: per_context(
                {
                    3: {"href": OTHER_TRUSTED, "elementCount": 5},
                    4: {"href": OTHER_TRUSTED + "2", "elementCount": 50},
                }
            )
        },
    )
    result = asyncio.run(resolver(host).resolve([shim(SHIM_URL, 100)]))
    assert result.context_id == 4


def test_resolution_is_deterministic():
    def build():
        return FakeHost(
            contexts=[ctx(0, HOST_URL, None), ctx(1, SHIM_URL), ctx(2, SHIM_URL + "#b")],
        )

    refs = [shim(SHIM_URL, 100)]
    first = asyncio.run(resolver(build()).resolve(refs))
    second = asyncio.run(resolver(build()).resolve(refs))
    assert first == second
    assert first.context_id == 1


def test_no_advertised_frames_returns_none_with_diagnostics():
    contexts = [ctx(0, HOST_URL, None), ctx(1, "https://ads.example.com/")]
    host = FakeHost(contexts=contexts)
    result = asyncio.run(resolver(host).resolve([]))
    assert result.method is ResolutionMethod.NONE
    assert not result.found
    assert result.diagnostics == tuple(contexts)


def test_top_level_shim_page_resolves_to_root():
    host = FakeHost(page_url=SHIM_URL)
    result = asyncio.run(resolver(host).resolve([]))
    assert result.method is ResolutionMethod.DIRECT_MATCH
    assert result.context_id == host.root_context_id


def test_heuristic_scan_prefers_non_trivial_content():
    host = FakeHost(
        contexts=[ctx(0, HOST_URL, None), ctx(1, ""), ctx(2, ""), ctx(3, "")],
        handlers={
            routines.FRAME_STATS: per_context(
                {
                    0: {"href": HOST_URL, "hasNonTrivialNodes": True, "elementCount": 10**6},
                    1: {"href": SHIM_URL, "hasNonTrivialNodes": True, "elementCount": 3},
                    2: {"href": OTHER_TRUSTED, "hasNonTrivialNodes": False, "elementCount": 900},
                }
            )
        },
    )
    result = asyncio.run(resolver(host).heuristic_scan())
    assert result.method is ResolutionMethod.HEURISTIC_SCAN
    assert result.context_id == 1


def test_candidate_scan_reports_visual_area():
    host = FakeHost(
        contexts=[ctx(0, HOST_URL, None), ctx(1, "")],
        handlers={
            routines.FRAME_STATS: per_context(
                {1: {"href": SHIM_URL, "visualArea": 640 * 480, "elementCount": 3}}
            )
        },
    )
    (candidate,) = asyncio.run(scan_candidate_frames(host, TRUSTED))
    assert candidate.context_id == 1
    assert candidate.visual_area == 640 * 480


def test_candidate_scan_survives_enumeration_failure():
    class UnlistableHost(FakeHost):
        async def enumerate_contexts(self):
            raise HostError("frame tree unavailable")

    assert asyncio.run(scan_candidate_frames(UnlistableHost(), TRUSTED)) == []
    assert asyncio.run(resolver(UnlistableHost()).heuristic_scan()) is None


def test_exporter_without_app_frame_reports_no_app_frame():
    host = FakeHost(handlers={routines.LIST_EMBEDS: []})
    exporter = Exporter(host, fast_config())
    with pytest.raises(ResolutionTimeout) as excinfo:
        asyncio.run(exporter.resolve_target())
    assert str(excinfo.value) == NO_APP_FRAME_MESSAGE


def test_exporter_unreachable_frame_reports_diagnostics():
    contexts = [ctx(0, HOST_URL, None), ctx(1, ""), ctx(2, "")]
    host = FakeHost(
        contexts=contexts,
        handlers={routines.LIST_EMBEDS: [{"src": SHIM_URL, "area": 100}]},
    )
    exporter = Exporter(host, fast_config())
    with pytest.raises(ResolutionTimeout) as excinfo:
        asyncio.run(exporter.resolve_target())
    message = str(excinfo.value)
    assert "could not reach the app's rendering context" in message
    assert f"Frame URL example: {SHIM_URL}" in message
    assert "- hidden url contexts=2" in message
    assert excinfo.value.diagnostics == tuple(contexts)


def test_exporter_falls_back_to_heuristic_scan():
    host = FakeHost(
        contexts=[ctx(0, HOST_URL, None), ctx(1, "")],
        handlers={
            routines.LIST_EMBEDS: [{"src": SHIM_URL, "area": 100}],
            routines.FRAME_STATS: per_context(
                {1: {"href": "", "origin": "https://abc123.scf.usercontent.goog",
                     "hasNonTrivialNodes": True}}
            ),
        },
    )
    result = asyncio.run(Exporter(host, fast_config()).resolve_target())
    assert result.method is ResolutionMethod.HEURISTIC_SCAN
    assert result.context_id == 1


def test_describe_failure_caps_context_lines():
    from framesnap.models import ResolutionResult

    frames = tuple(ctx(i, "") for i in range(30))
    result = ResolutionResult(None, None, ResolutionMethod.NONE, frames)
    text = describe_failure(result, [])
    assert "- contexts=30" in text
    assert "- contexts (first 20):" in text
    assert text.count("(url hidden)") == 20
