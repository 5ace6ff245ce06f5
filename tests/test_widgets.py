import asyncio

from bs4 import BeautifulSoup

from fakes import FakeFetcher, FakeHost, response
from framesnap import routines
from framesnap.config import ExportOptions
from framesnap.models import WidgetState
from framesnap.snapshot import transform_markup
from framesnap.widgets import ClassSelectorPattern, WidgetPreserver

LABELS = ["Alpha", "Beta", "Gamma"]

SCRIPT = """
const classes = [
  { name: 'Alpha', image: 'https://api.example.com/img?c=alpha' },
  { name: 'Beta', image: 'https://api.example.com/img?c=beta' },
  { name: "Gamma", image: "https://api.example.com/img?c=gamma" },
];
let currentClassIndex = 0;
function selectClass(i) { document.getElementById('class-image').src = classes[i].image; }
selectClass(0);
"""

PAGE = f"""<!DOCTYPE html><html><head></head><body>
<div id="class-nav-container"><button>Alpha</button><button>Beta</button><button>Gamma</button></div>
<img id="class-image" src="https://api.example.com/img?c=beta" style="opacity:0">
<div id="class-name">Beta</div>
<script>{SCRIPT}</script>
</body></html>"""


class SimulatedWidget:
    """Three-state image switcher that starts on ``Beta``."""

    def __init__(self, clickable=True):
        self.current = 1
        self.clickable = clickable
        self.clicks = []

    def src(self):
        return f"https://api.example.com/img?c={LABELS[self.current].lower()}"

    def inspect(self, context_id, arg):
        return {
            "buttons": list(LABELS),
            "label": LABELS[self.current],
            "src": self.src(),
            "ready": True,
        }

    def click(self, context_id, arg):
        self.clicks.append(arg["index"])
        if not self.clickable:
            return False
        self.current = arg["index"]
        return True

    def capture(self, context_id, arg):
        return f"data:image/png;base64,{LABELS[self.current]}"

    def host(self):
        return FakeHost(
            handlers={
                routines.WIDGET_INSPECT: self.inspect,
                routines.WIDGET_CLICK: self.click,
                routines.CAPTURE_IMAGE: self.capture,
            }
        )


def capture(host, warnings):
    return asyncio.run(
        WidgetPreserver().capture(host, 0, FakeFetcher(), warnings, interval=0.001, timeout=0.1)
    )


def test_captures_every_state_including_initial():
    widget = SimulatedWidget()
    warnings = []
    state = capture(widget.host(), warnings)
    assert state.kind == "class-nav-container"
    assert state.initial_label == "Beta"
    assert state.initial_index == 1
    assert state.images_by_label == {
        "Alpha": "data:image/png;base64,Alpha",
        "Beta": "data:image/png;base64,Beta",
        "Gamma": "data:image/png;base64,Gamma",
    }
    assert widget.current == 1
    assert warnings == []


def test_initial_button_is_not_clicked_during_capture():
    widget = SimulatedWidget()
    capture(widget.host(), [])
    # 0 and 2 are captured, then 1 restores the initial state.
    assert widget.clicks == [0, 2, 1]


def test_fetch_fallback_when_canvas_is_tainted():
    widget = SimulatedWidget()
    host = widget.host()
    host.handlers[routines.CAPTURE_IMAGE] = None
    svg = b"<svg xmlns='http://www.w3.org/2000/svg'/>"
    fetcher = FakeFetcher(
        {
            f"https://api.example.com/img?c={label.lower()}": response(svg, "image/svg+xml")
            for label in LABELS
        }
    )
    state = asyncio.run(
        WidgetPreserver().capture(host, 0, fetcher, [], interval=0.001, timeout=0.1)
    )
    assert set(state.images_by_label) == set(LABELS)
    assert all(value.startswith("data:image/svg+xml;base64,") for value in state.images_by_label.values())


def test_abstains_when_states_cannot_be_captured():
    widget = SimulatedWidget(clickable=False)
    warnings = []
    assert capture(widget.host(), warnings) is None
    assert any("disappeared" in warning for warning in warnings)


def test_abstains_when_widget_absent():
    host = FakeHost(handlers={routines.WIDGET_INSPECT: None})
    assert capture(host, []) is None


def state():
    return WidgetState(
        kind="class-nav-container",
        initial_label="Beta",
        initial_index=1,
        images_by_label={"Alpha": "data:A", "Beta": "data:B", "Gamma": "data:G"},
    )


def test_patch_script_text_substitutes_images_and_index():
    patched = ClassSelectorPattern.patch_script_text(SCRIPT, state())
    assert "name: 'Alpha', image: 'data:A'" in patched
    assert "name: 'Beta', image: 'data:B'" in patched
    assert 'name: "Gamma", image: "data:G"' in patched
    assert "let currentClassIndex = 1;" in patched
    assert "selectClass(1);" in patched
    assert "api.example.com" not in patched


def test_keep_scripts_export_patches_widget():
    options = ExportOptions.from_mapping({"keepScripts": True})
    result = asyncio.run(
        transform_markup(PAGE, "https://app.example.com/", options, FakeFetcher(), state())
    )
    soup = BeautifulSoup(result.markup, "html.parser")
    image = soup.find("img", id="class-image")
    assert image["src"] == "data:B"
    assert "opacity:1" in image["style"]
    assert "selectClass(1);" in soup.find("script").string
    assert any("embedded 3 widget images" in warning for warning in result.warnings)


def test_patch_skipped_without_matching_script():
    markup = PAGE.replace("const classes", "const items")
    options = ExportOptions.from_mapping({"keepScripts": True})
    result = asyncio.run(
        transform_markup(markup, "https://app.example.com/", options, FakeFetcher(), state())
    )
    soup = BeautifulSoup(result.markup, "html.parser")
    assert soup.find("img", id="class-image")["src"] == "https://api.example.com/img?c=beta"
    assert any("Widget patch skipped" in warning for warning in result.warnings)
