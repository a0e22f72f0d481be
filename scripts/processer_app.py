import logging
from pathlib import Path
from threading import Lock, Thread
from queue import Queue

from flask import Flask, Response, current_app, render_template, request, send_from_directory

from bookcache import BookCache
from downloader import make_session
from errors import BookError
from processer import Settings, from_url

logger = logging.getLogger(__name__)

script_path = Path(__file__).parent.resolve()
root_path = script_path.parent.resolve()
app = Flask(__name__, template_folder=str(root_path / 'webinterface'))
app.config["SETTINGS"] = Settings.from_env()
app.extensions["bookcache"] = BookCache(app.config["SETTINGS"].cache_dir)
_cache_lock = Lock()

FILE_READY = "FILE_READY:"
ERROR = "ERROR:"


def get_settings():
    return current_app.config["SETTINGS"]


def get_cache():
    """One cache per app so every request thread shares the per-key write locks."""
    settings = get_settings()
    with _cache_lock:
        cache = current_app.extensions.get("bookcache")
        if cache is None or cache.root != Path(settings.cache_dir):
            # settings were swapped after startup
            cache = BookCache(settings.cache_dir)
            current_app.extensions["bookcache"] = cache
        return cache


def run_book(url, cache, settings, output_queue):
    """Process one book, reporting progress and the outcome through ``output_queue``."""
    def progress(index, total, href):
        output_queue.put(f"{index}/{total}: {href}")

    try:
        with make_session(settings.user_agent) as session:
            epub_path = from_url(url, cache, session, settings, progress)
        output_queue.put(f"{FILE_READY}{epub_path.name}")
    except BookError as e:
        logger.error("Failed %s: %s", url, e)
        output_queue.put(f"{ERROR}{e}")
    except Exception as e:
        logger.exception("Unexpected error while processing %s", url)
        output_queue.put(f"{ERROR}{type(e).__name__}: {e}")


@app.route('/', methods=['GET', 'POST'])
def index():
    if request.method == 'POST':
        url = request.form['url'].strip()
        return render_template('processing.html', url=url)

    return render_template('index.html')


@app.route('/process')
def process():
    url = request.args.get('url', '').strip()
    if not url:
        return Response(f"data: {ERROR}missing url\n\n", mimetype='text/event-stream')
    settings = get_settings()
    cache = get_cache()
    output_queue = Queue()

    Thread(target=run_book, args=(url, cache, settings, output_queue), daemon=True).start()

    def generate():
        while True:
            output = output_queue.get()
            yield f"data: {output}\n\n"
            if output.startswith(FILE_READY) or output.startswith(ERROR):
                break

    return Response(generate(), mimetype='text/event-stream')


@app.route('/download/<path:file_name>')
def download(file_name):
    return send_from_directory(
        Path(get_settings().output_dir).resolve(),
        file_name,
        as_attachment=True,
        download_name=Path(file_name).name,
    )


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app.run(debug=True)
