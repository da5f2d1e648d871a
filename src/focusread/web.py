from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

from fastapi import Body, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, Response

from .errors import FileReadError, ImportFormatError, NarrationUnavailableError
from .library_io import (
    IngestResult,
    decode_document,
    export_filename,
    export_library,
    ingest_texts,
    is_accepted_document,
    parse_library_json,
)
from .logging_utils import debug_log
from .narration import Pyttsx3SpeechEngine, SpeechEngine
from .session import ReaderSession
from .store import MAX_WPM, MIN_WPM, WPM_STEP, JsonDirectoryPort, LibraryStore
from .tokens import serialize_words

ENGINE_CHOICES = ("pyttsx3", "none")


@dataclass(slots=True)
class WebConfig:
    root: Path
    host: str = "127.0.0.1"
    port: int = 2047
    engine: str = "pyttsx3"
    voice: str | None = None


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>FocusRead</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <style>
    :root {
      font-family: "Inter", -apple-system, BlinkMacSystemFont, "Helvetica Neue", sans-serif;
      --radius: 18px;
    }
    [data-theme="dark"] { color-scheme: dark; --bg: #0b0d14; --panel: #151926; --accent-bg: #1f2436; --text: #f5f5f5; --muted: #9aa0b5; --primary: #ef4444; --primary-light: rgba(239,68,68,0.18); }
    [data-theme="light"] { color-scheme: light; --bg: #f4f5f8; --panel: #ffffff; --accent-bg: #eceef4; --text: #14161f; --muted: #6b7080; --primary: #dc2626; --primary-light: rgba(220,38,38,0.12); }
    [data-theme="sepia"] { color-scheme: light; --bg: #f4ecd8; --panel: #fbf5e6; --accent-bg: #ece0c4; --text: #3e2f1c; --muted: #7d6a4f; --primary: #b45309; --primary-light: rgba(180,83,9,0.14); }
    body { margin: 0; background: var(--bg); color: var(--text); display: flex; height: 100vh; overflow: hidden; }
    button { font: inherit; color: inherit; background: var(--accent-bg); border: none; border-radius: 10px; padding: 0.45rem 0.8rem; cursor: pointer; }
    button.primary { background: var(--primary); color: white; }
    aside { width: 280px; flex-shrink: 0; background: var(--panel); padding: 1rem; overflow-y: auto; display: flex; flex-direction: column; gap: 0.6rem; }
    aside h1 { margin: 0 0 0.4rem; font-size: 1.2rem; }
    .tree-node { display: flex; align-items: center; gap: 0.3rem; border-radius: 6px; padding: 0.2rem 0.4rem; cursor: pointer; font-size: 0.88rem; }
    .tree-node.active { background: var(--primary-light); color: var(--primary); font-weight: 700; }
    .tree-node.drop { outline: 2px dashed var(--primary); }
    .tree-node .delete { margin-left: auto; opacity: 0.4; padding: 0 0.3rem; background: transparent; }
    main { flex: 1; display: flex; flex-direction: column; gap: 0.8rem; padding: 1rem; overflow: hidden; }
    section.panel { background: var(--panel); border-radius: var(--radius); padding: 1rem 1.2rem; }
    #reader { height: 35%; min-height: 200px; display: flex; flex-direction: column; justify-content: center; align-items: center; cursor: pointer; position: relative; }
    #word { display: grid; grid-template-columns: minmax(0, 1fr) auto minmax(0, 1fr); width: 100%; font-family: "JetBrains Mono", monospace; font-weight: 600; }
    #word .before { text-align: right; }
    #word .focal { color: var(--primary); }
    #progress { position: absolute; bottom: 0.8rem; font-size: 0.65rem; font-weight: 800; color: var(--muted); letter-spacing: 0.08em; }
    #controls { display: flex; gap: 0.6rem; align-items: center; flex-wrap: wrap; }
    #controls input[type=range] { flex: 1; }
    #text { flex: 1; overflow-y: auto; line-height: 2.1; }
    #text span { padding: 1px 4px; border-radius: 4px; cursor: pointer; }
    #text span.current { background: var(--primary); color: white; }
    #text span.highlighted { background: var(--primary-light); color: var(--primary); font-weight: 700; text-decoration: underline; }
    #text span.noted { border-bottom: 3px solid #facc15; }
    #note-editor { display: none; gap: 0.5rem; flex-direction: column; }
    #note-editor.open { display: flex; }
    #note-editor textarea { min-height: 80px; border-radius: 10px; padding: 0.6rem; background: var(--accent-bg); color: var(--text); border: none; }
    #error { color: var(--primary); min-height: 1.2em; font-size: 0.85rem; }
    .muted { color: var(--muted); font-size: 0.8rem; }
  </style>
</head>
<body data-theme="dark">
  <aside>
    <h1>FocusRead</h1>
    <label class="muted">Add files <input id="file-input" type="file" multiple accept=".txt,.md"></label>
    <label class="muted">Add folder <input id="folder-input" type="file" webkitdirectory multiple></label>
    <div style="display:flex; gap:0.4rem">
      <button id="export-btn">Export</button>
      <label class="muted">Import <input id="import-input" type="file" accept=".json"></label>
    </div>
    <div id="tree" data-path=""></div>
  </aside>
  <main>
    <section class="panel" id="reader">
      <div id="word"><span class="before"></span><span class="focal"></span><span class="after"></span></div>
      <div id="progress"></div>
    </section>
    <section class="panel" id="controls">
      <button class="primary" id="play-btn">Play</button>
      <button id="reset-btn">Reset</button>
      <button id="narrate-btn">Narrate</button>
      <span class="muted">SPEED <strong id="wpm-label"></strong></span>
      <input id="wpm" type="range" min="__MIN_WPM__" max="__MAX_WPM__" step="__WPM_STEP__">
      <span class="muted" id="eta"></span>
      <select id="theme"><option>dark</option><option>light</option><option>sepia</option></select>
      <label class="muted"><input type="checkbox" id="highlight-mode"> Highlight mode</label>
    </section>
    <div id="error"></div>
    <section class="panel" id="note-editor">
      <div class="muted">Word meaning: <strong id="note-word"></strong></div>
      <textarea id="note-text" placeholder="Type word meaning or study notes here..."></textarea>
      <div style="display:flex; gap:0.5rem; justify-content:flex-end">
        <button id="note-remove">Remove</button>
        <button id="note-close">Close</button>
        <button class="primary" id="note-save">Save Note</button>
      </div>
    </section>
    <section class="panel" id="text"></section>
  </main>
  <script>
    const state = { snapshot: null, words: [], library: null, editing: null, dragged: null, pollTimer: null };
    const $ = (id) => document.getElementById(id);

    async function fetchJSON(url, options = {}) {
      const res = await fetch(url, { cache: 'no-store', ...options });
      if (!res.ok) {
        const text = await res.text();
        let detail = text;
        try { detail = JSON.parse(text).detail || text; } catch { /* plain text */ }
        throw new Error(detail || `HTTP ${res.status}`);
      }
      return res.json();
    }
    function post(url, body) {
      return fetchJSON(url, { method: 'POST', headers: { 'Content-Type': 'application/json' }, body: JSON.stringify(body || {}) });
    }
    function showError(error) { $('error').textContent = error ? String(error.message || error) : ''; }
    function handlePromise(promise) { promise.catch(showError); }

    function renderTree(node, container, depth) {
      for (const child of node.children || []) {
        const row = document.createElement('div');
        row.className = 'tree-node';
        row.style.paddingLeft = `${depth * 12 + 6}px`;
        row.draggable = true;
        const isFile = child.type === 'file';
        const open = state.library.expanded.includes(child.fullPath);
        row.textContent = `${isFile ? '📄' : (open ? '📂' : '📁')} ${child.name}`;
        if (isFile && child.id === state.library.activeId) row.classList.add('active');
        const del = document.createElement('button');
        del.className = 'delete';
        del.textContent = '✕';
        del.addEventListener('click', (event) => {
          event.stopPropagation();
          if (!window.confirm(`Are you sure you want to delete "${child.name}"?`)) return;
          handlePromise(fetchJSON(`/api/library/items/${child.fullPath.split('/').map(encodeURIComponent).join('/')}`, { method: 'DELETE' }).then(refreshAll));
        });
        row.appendChild(del);
        row.addEventListener('click', () => {
          const action = isFile ? post(`/api/entries/${child.id}/select`) : post('/api/library/folders/toggle', { path: child.fullPath });
          handlePromise(action.then(refreshAll));
        });
        row.addEventListener('dragstart', () => { state.dragged = child.fullPath; });
        if (!isFile) {
          row.addEventListener('dragover', (event) => { event.preventDefault(); row.classList.add('drop'); });
          row.addEventListener('dragleave', () => row.classList.remove('drop'));
          row.addEventListener('drop', (event) => {
            event.preventDefault();
            row.classList.remove('drop');
            handlePromise(post('/api/library/move', { source: state.dragged, dest: child.fullPath }).then(refreshAll));
          });
        }
        container.appendChild(row);
        if (!isFile && open) renderTree(child, container, depth + 1);
      }
    }

    function renderWord(snapshot) {
      document.body.dataset.theme = snapshot.settings.theme;
      const word = snapshot.word;
      const [before, focal, after] = $('word').children;
      if (snapshot.status === 'FINISHED') {
        before.textContent = ''; focal.textContent = 'DONE'; after.textContent = '';
      } else if (word) {
        before.textContent = word.focus.before;
        focal.textContent = word.focus.focal;
        after.textContent = word.focus.after;
        focal.style.color = snapshot.settings.showFocusPoint ? '' : 'inherit';
        $('word').style.fontSize = `clamp(24px, ${word.fontSize}px, 9vw)`;
      } else {
        before.textContent = ''; focal.textContent = ''; after.textContent = 'Upload a file to start';
      }
      $('progress').textContent = snapshot.progress;
      $('eta').textContent = snapshot.eta;
      $('wpm').value = snapshot.settings.wpm;
      $('wpm-label').textContent = snapshot.settings.wpm;
      $('theme').value = snapshot.settings.theme;
      $('play-btn').textContent = snapshot.status === 'PLAYING' ? 'Pause' : 'Play';
      $('narrate-btn').textContent = snapshot.isNarrating ? 'Stop narration' : 'Narrate';
      $('narrate-btn').disabled = !snapshot.narrationAvailable;
      if (snapshot.error) showError(snapshot.error);
      document.querySelectorAll('#text span.current').forEach(span => span.classList.remove('current'));
      const current = $('text').children[snapshot.currentIndex];
      if (current) {
        current.classList.add('current');
        if (snapshot.status === 'PLAYING' || snapshot.isNarrating) current.scrollIntoView({ block: 'nearest' });
      }
    }

    function renderText() {
      const pane = $('text');
      pane.textContent = '';
      for (const word of state.words) {
        const span = document.createElement('span');
        span.textContent = word.text;
        if (word.isHighlighted) span.classList.add('highlighted');
        if (word.note) { span.classList.add('noted'); span.title = word.note; }
        span.addEventListener('click', () => onWordClick(word));
        pane.appendChild(span);
        pane.appendChild(document.createTextNode(' '));
      }
    }

    async function onWordClick(word) {
      if ($('highlight-mode').checked) {
        if (!word.isHighlighted) await post(`/api/reader/highlights/${word.index}/toggle`);
        state.editing = word.index;
        await refreshWords();
        $('note-word').textContent = word.text;
        $('note-text').value = state.words[word.index].note || '';
        $('note-editor').classList.add('open');
        return;
      }
      state.snapshot = await post('/api/reader/select', { index: word.index });
      renderWord(state.snapshot);
    }

    function closeNoteEditor() { state.editing = null; $('note-editor').classList.remove('open'); }

    async function refreshLibrary() {
      state.library = await fetchJSON('/api/library');
      const tree = $('tree');
      tree.textContent = '';
      renderTree(state.library.tree, tree, 0);
    }
    async function refreshWords() {
      const payload = await fetchJSON('/api/reader/words');
      state.words = payload.words;
      renderText();
    }
    async function refreshSnapshot() {
      state.snapshot = await fetchJSON(`/api/reader?viewport=${window.innerWidth}`);
      renderWord(state.snapshot);
      const busy = state.snapshot.status === 'PLAYING' || state.snapshot.isNarrating;
      if (busy && state.pollTimer === null) {
        state.pollTimer = window.setInterval(() => handlePromise(refreshSnapshot()), 100);
      } else if (!busy && state.pollTimer !== null) {
        window.clearInterval(state.pollTimer);
        state.pollTimer = null;
      }
    }
    async function refreshAll() {
      showError(null);
      await refreshLibrary();
      await refreshWords();
      await refreshSnapshot();
    }

    async function uploadFiles(files) {
      const form = new FormData();
      for (const file of files) {
        form.append('files', file);
        form.append('paths', file.webkitRelativePath || file.name);
      }
      const result = await fetchJSON('/api/library/upload', { method: 'POST', body: form });
      if (result.skipped.length) showError(`Skipped: ${result.skipped.map(item => item.path).join(', ')}`);
      await refreshLibrary();
    }

    $('file-input').addEventListener('change', (event) => handlePromise(uploadFiles(event.target.files)));
    $('folder-input').addEventListener('change', (event) => handlePromise(uploadFiles(event.target.files)));
    $('import-input').addEventListener('change', (event) => {
      const file = event.target.files[0];
      if (!file) return;
      const form = new FormData();
      form.append('file', file);
      handlePromise(fetchJSON('/api/library/import', { method: 'POST', body: form }).then(refreshAll));
      event.target.value = '';
    });
    $('export-btn').addEventListener('click', () => { window.location.href = '/api/library/export'; });
    $('reader').addEventListener('click', () => handlePromise(post('/api/reader/toggle').then(refreshSnapshot)));
    $('play-btn').addEventListener('click', () => handlePromise(post('/api/reader/toggle').then(refreshSnapshot)));
    $('reset-btn').addEventListener('click', () => handlePromise(post('/api/reader/reset').then(refreshSnapshot)));
    $('narrate-btn').addEventListener('click', () => {
      const url = state.snapshot && state.snapshot.isNarrating ? '/api/reader/narration/stop' : '/api/reader/narrate';
      handlePromise(post(url).then(refreshSnapshot));
    });
    $('wpm').addEventListener('change', (event) => {
      handlePromise(fetchJSON('/api/settings', { method: 'PATCH', headers: { 'Content-Type': 'application/json' }, body: JSON.stringify({ wpm: Number(event.target.value) }) }).then(refreshSnapshot));
    });
    $('theme').addEventListener('change', (event) => {
      handlePromise(fetchJSON('/api/settings', { method: 'PATCH', headers: { 'Content-Type': 'application/json' }, body: JSON.stringify({ theme: event.target.value }) }).then(refreshSnapshot));
    });
    $('tree').addEventListener('dragover', (event) => event.preventDefault());
    $('tree').addEventListener('drop', (event) => {
      if (event.target !== $('tree')) return;
      handlePromise(post('/api/library/move', { source: state.dragged, dest: '' }).then(refreshAll));
    });
    $('note-close').addEventListener('click', closeNoteEditor);
    $('note-save').addEventListener('click', () => {
      if (state.editing === null) return;
      const index = state.editing;
      handlePromise(fetchJSON(`/api/reader/notes/${index}`, { method: 'PUT', headers: { 'Content-Type': 'application/json' }, body: JSON.stringify({ note: $('note-text').value }) }).then(() => { closeNoteEditor(); return refreshWords(); }));
    });
    $('note-remove').addEventListener('click', () => {
      if (state.editing === null) return;
      const index = state.editing;
      handlePromise(post(`/api/reader/highlights/${index}/toggle`).then(() => { closeNoteEditor(); return refreshWords(); }));
    });

    handlePromise(refreshAll());
  </script>
</body>
</html>
""".replace("__MIN_WPM__", str(MIN_WPM)).replace("__MAX_WPM__", str(MAX_WPM)).replace(
    "__WPM_STEP__", str(WPM_STEP)
)


def _build_engine(config: WebConfig) -> SpeechEngine | None:
    if config.engine == "none":
        return None
    if config.engine != "pyttsx3":
        raise ValueError(f"Unknown speech engine: {config.engine}")
    try:
        return Pyttsx3SpeechEngine(voice=config.voice)
    except NarrationUnavailableError as exc:
        debug_log(f"narration disabled: {exc}")
        return None


def _require_int(payload: dict[str, object], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise HTTPException(status_code=400, detail=f"{key} must be an integer.")
    return value


def _require_str(payload: dict[str, object], key: str, *, allow_empty: bool = False) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or (not allow_empty and not value):
        raise HTTPException(status_code=400, detail=f"{key} must be a string.")
    return value.strip("/")


def create_app(
    config: WebConfig,
    *,
    store: LibraryStore | None = None,
    engine: SpeechEngine | None = None,
) -> FastAPI:
    root = config.root.expanduser()
    if store is None:
        store = LibraryStore.load(JsonDirectoryPort(root))
    if engine is None:
        engine = _build_engine(config)

    session = ReaderSession(store, engine=engine)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            session.close()

    app = FastAPI(title="FocusRead", lifespan=lifespan)
    app.state.config = config
    app.state.root = root
    app.state.session = session

    def _library_payload() -> dict[str, object]:
        return {
            "tree": session.tree().to_payload(),
            "entries": [entry.summary_payload() for entry in store.entries],
            "activeId": store.active_id,
            "expanded": session.folders.expanded(),
        }

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return INDEX_HTML

    # library -----------------------------------------------------------------

    @app.get("/api/library")
    async def api_library() -> JSONResponse:
        return JSONResponse(_library_payload())

    @app.post("/api/library/upload")
    async def api_upload(
        files: list[UploadFile] = File(...),
        paths: list[str] | None = Form(None),
    ) -> JSONResponse:
        documents: list[tuple[str, str]] = []
        skipped: list[tuple[str, str]] = []
        for position, upload in enumerate(files):
            relative = upload.filename or f"upload-{position + 1}.txt"
            if paths and position < len(paths) and paths[position]:
                relative = paths[position]
            try:
                if not is_accepted_document(relative):
                    continue
                data = await upload.read()
                documents.append((relative, decode_document(data, relative)))
            except (FileReadError, OSError) as exc:
                debug_log(f"skipping upload {relative}: {exc}")
                skipped.append((relative, str(exc)))
            finally:
                await upload.close()
        result = ingest_texts(documents, store.entries)
        result = session.ingest(IngestResult(entries=result.entries, skipped=skipped))
        return JSONResponse(result.to_payload())

    @app.post("/api/library/import")
    async def api_import(file: UploadFile = File(...)) -> JSONResponse:
        try:
            raw = await file.read()
        finally:
            await file.close()
        try:
            entries = parse_library_json(raw.decode("utf-8-sig"))
        except UnicodeDecodeError as exc:
            raise HTTPException(status_code=400, detail="Invalid JSON format") from exc
        except ImportFormatError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        session.replace_library(entries)
        return JSONResponse({"imported": len(entries), **_library_payload()})

    @app.get("/api/library/export")
    async def api_export() -> Response:
        filename = export_filename()
        return Response(
            content=export_library(store.entries),
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/api/library/move")
    async def api_move(payload: dict[str, object] = Body(...)) -> JSONResponse:
        source = _require_str(payload, "source")
        dest = _require_str(payload, "dest", allow_empty=True)
        moved = session.move_path(source, dest)
        return JSONResponse({"moved": moved, **_library_payload()})

    @app.delete("/api/library/items/{item_path:path}")
    async def api_delete_item(item_path: str) -> JSONResponse:
        target = item_path.strip("/")
        if not target:
            raise HTTPException(status_code=400, detail="Refusing to delete the library root.")
        removed = session.delete_path(target)
        if not removed:
            raise HTTPException(status_code=404, detail="Item not found")
        return JSONResponse(
            {"deleted": [entry.path for entry in removed], **_library_payload()}
        )

    @app.post("/api/library/folders/toggle")
    async def api_toggle_folder(payload: dict[str, object] = Body(...)) -> JSONResponse:
        path = _require_str(payload, "path", allow_empty=True)
        is_open = session.toggle_folder(path)
        return JSONResponse({"path": path, "open": is_open, "expanded": session.folders.expanded()})

    # entries -----------------------------------------------------------------

    @app.post("/api/entries/{entry_id}/select")
    async def api_select_entry(entry_id: str) -> JSONResponse:
        if store.get(entry_id) is None:
            raise HTTPException(status_code=404, detail="Entry not found")
        session.select_entry(entry_id)
        return JSONResponse(session.snapshot())

    @app.delete("/api/entries/{entry_id}")
    async def api_delete_entry(entry_id: str) -> JSONResponse:
        removed = session.delete_entry(entry_id)
        if not removed:
            raise HTTPException(status_code=404, detail="Entry not found")
        return JSONResponse({"deleted": [entry.path for entry in removed], **_library_payload()})

    # reader ------------------------------------------------------------------

    @app.get("/api/reader")
    async def api_reader(viewport: float | None = Query(None)) -> JSONResponse:
        return JSONResponse(session.snapshot(viewport_width=viewport))

    @app.get("/api/reader/words")
    async def api_reader_words() -> JSONResponse:
        return JSONResponse({"activeId": store.active_id, "words": serialize_words(session.words)})

    @app.post("/api/reader/toggle")
    async def api_toggle() -> JSONResponse:
        session.toggle_play()
        return JSONResponse(session.snapshot())

    @app.post("/api/reader/play")
    async def api_play() -> JSONResponse:
        session.play()
        return JSONResponse(session.snapshot())

    @app.post("/api/reader/pause")
    async def api_pause() -> JSONResponse:
        session.pause()
        return JSONResponse(session.snapshot())

    @app.post("/api/reader/reset")
    async def api_reset() -> JSONResponse:
        session.reset()
        return JSONResponse(session.snapshot())

    @app.post("/api/reader/select")
    async def api_select_word(payload: dict[str, object] = Body(...)) -> JSONResponse:
        index = _require_int(payload, "index")
        if not session.select_word(index):
            raise HTTPException(status_code=404, detail="Word index out of range")
        return JSONResponse(session.snapshot())

    @app.post("/api/reader/narrate")
    async def api_narrate() -> JSONResponse:
        session.narrate()
        return JSONResponse(session.snapshot())

    @app.post("/api/reader/narration/stop")
    async def api_stop_narration() -> JSONResponse:
        session.stop_narration()
        return JSONResponse(session.snapshot())

    @app.post("/api/reader/highlights/{index}/toggle")
    async def api_toggle_highlight(index: int) -> JSONResponse:
        state = session.toggle_highlight(index)
        if state is None:
            raise HTTPException(status_code=404, detail="Word not found")
        return JSONResponse({"index": index, "highlighted": state})

    @app.put("/api/reader/notes/{index}")
    async def api_save_note(index: int, payload: dict[str, object] = Body(...)) -> JSONResponse:
        note = payload.get("note")
        if not isinstance(note, str):
            raise HTTPException(status_code=400, detail="note must be a string.")
        if not session.save_note(index, note):
            raise HTTPException(status_code=404, detail="Word not found")
        entry = store.active_entry()
        saved = entry.notes.get(index) if entry is not None else None
        return JSONResponse({"index": index, "note": saved})

    # settings ----------------------------------------------------------------

    @app.get("/api/settings")
    async def api_settings() -> JSONResponse:
        return JSONResponse(store.settings.to_payload())

    @app.patch("/api/settings")
    async def api_update_settings(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        settings = session.update_settings(payload)
        return JSONResponse(settings.to_payload())

    return app


__all__ = ["WebConfig", "create_app", "ENGINE_CHOICES", "INDEX_HTML"]
