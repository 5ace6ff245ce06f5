"""Named routines evaluated inside rendering contexts.

Resolution routines are self-contained and read-only so they can run in any
frame. Export routines call into the helper module (``HELPER_MODULE``) which
the exporter injects into the resolved context first.
"""

from __future__ import annotations

from typing import Dict

LIST_EMBEDS = "list_embeds"
FRAME_STATS = "frame_stats"
PROBE = "probe"
PING = "ping"
SERIALIZE = "serialize"
FETCH_BLOB = "fetch_blob"
WIDGET_INSPECT = "widget_inspect"
WIDGET_CLICK = "widget_click"
CAPTURE_IMAGE = "capture_image"

HELPER_MODULE = """
(() => {
  if (globalThis.__framesnap) return true;
  const NON_TRIVIAL = "*:not(script):not(style):not(link):not(meta)";
  const helper = {
    version: 1,
    frameStats() {
      const body = document.body;
      let elementCount = 0;
      let textLength = 0;
      let hasNonTrivialNodes = false;
      try {
        if (body) {
          elementCount = body.querySelectorAll("*").length;
          textLength = (body.innerText || "").length;
          hasNonTrivialNodes = !!body.querySelector(NON_TRIVIAL);
        }
      } catch (e) {}
      return { elementCount, textLength, hasNonTrivialNodes };
    },
    widget(sel) {
      const container = document.querySelector(sel.container);
      const image = document.querySelector(sel.image);
      const label = document.querySelector(sel.label);
      if (!container || !(image instanceof HTMLImageElement) || !label) return null;
      const buttons = Array.from(container.querySelectorAll("button"));
      return { container, image, label, buttons };
    },
    imageSrc(img) {
      return String(img.currentSrc || img.src || "").trim();
    },
    imageReady(img) {
      return !!(img.complete && img.naturalWidth > 0);
    },
    captureImage(img) {
      const src = helper.imageSrc(img);
      if (src.startsWith("data:")) return src;
      const w = img.naturalWidth || img.width || 0;
      const h = img.naturalHeight || img.height || 0;
      if (!(w > 0 && h > 0)) return null;
      try {
        const canvas = document.createElement("canvas");
        canvas.width = w;
        canvas.height = h;
        const ctx = canvas.getContext("2d");
        if (!ctx) return null;
        ctx.drawImage(img, 0, 0);
        const out = canvas.toDataURL("image/png");
        return out && out.startsWith("data:") ? out : null;
      } catch (e) {
        return null;
      }
    },
    async fetchAsDataUrl(url) {
      const res = await fetch(url);
      if (!res.ok) throw new Error("HTTP " + res.status);
      const blob = await res.blob();
      return await new Promise((resolve, reject) => {
        const reader = new FileReader();
        reader.onload = () => resolve(String(reader.result));
        reader.onerror = () => reject(new Error("FileReader failed"));
        reader.readAsDataURL(blob);
      });
    },
  };
  globalThis.__framesnap = helper;
  return true;
})()
"""

ROUTINES: Dict[str, str] = {
    LIST_EMBEDS: """
() => Array.from(document.querySelectorAll("iframe")).map((iframe) => {
  const src = iframe.getAttribute("src") || iframe.src || "";
  const rect = iframe.getBoundingClientRect();
  return { src: String(src), area: Math.max(0, rect.width) * Math.max(0, rect.height) };
})
""",
    FRAME_STATS: """
() => {
  const body = document.body;
  let elementCount = 0;
  let textLength = 0;
  let hasNonTrivialNodes = false;
  try {
    if (body) {
      elementCount = body.querySelectorAll("*").length;
      textLength = (body.innerText || "").length;
      hasNonTrivialNodes = !!body.querySelector("*:not(script):not(style):not(link):not(meta)");
    }
  } catch (e) {}
  return {
    href: String(location.href || ""),
    origin: String(location.origin || ""),
    visualArea: Math.max(0, window.innerWidth || 0) * Math.max(0, window.innerHeight || 0),
    elementCount,
    textLength,
    hasNonTrivialNodes,
  };
}
""",
    PROBE: """
() => {
  let elementCount = 0;
  try {
    elementCount = document.body ? document.body.querySelectorAll("*").length : 0;
  } catch (e) {}
  return {
    href: String(location.href || ""),
    origin: String(location.origin || ""),
    elementCount,
    readyState: String(document.readyState || ""),
  };
}
""",
    PING: """
() => {
  const helper = globalThis.__framesnap;
  const stats = helper ? helper.frameStats() : {};
  return Object.assign(
    { helper: !!helper, href: String(location.href || ""), origin: String(location.origin || ""),
      isTop: window.top === window },
    stats
  );
}
""",
    SERIALIZE: """
() => "<!DOCTYPE html>\\n" + document.documentElement.outerHTML
""",
    FETCH_BLOB: """
(url) => globalThis.__framesnap.fetchAsDataUrl(url)
""",
    WIDGET_INSPECT: """
(sel) => {
  const helper = globalThis.__framesnap;
  const w = helper.widget(sel);
  if (!w) return null;
  return {
    buttons: w.buttons.map((b) => String(b.innerText || "").trim()),
    label: String(w.label.innerText || "").trim(),
    src: helper.imageSrc(w.image),
    ready: helper.imageReady(w.image),
  };
}
""",
    WIDGET_CLICK: """
(arg) => {
  const w = globalThis.__framesnap.widget(arg.selectors);
  if (!w || !w.buttons[arg.index]) return false;
  const btn = w.buttons[arg.index];
  try { btn.scrollIntoView({ block: "center", inline: "center" }); } catch (e) {}
  btn.click();
  return true;
}
""",
    CAPTURE_IMAGE: """
(sel) => {
  const helper = globalThis.__framesnap;
  const img = document.querySelector(sel.image);
  if (!(img instanceof HTMLImageElement)) return null;
  return helper.captureImage(img);
}
""",
}
