from __future__ import annotations

from jinja2 import Environment

_env = Environment(autoescape=True)

_STYLE = """
        body { font-family: -apple-system, system-ui, sans-serif; background: #f4f4f5; display: flex; justify-content: center; align-items: center; height: 100vh; margin: 0; color: #18181b; }
        .card { background: white; padding: 40px; border-radius: 12px; box-shadow: 0 4px 6px -1px rgba(0,0,0,0.1); text-align: center; max-width: 400px; width: 100%; }
        h1 { font-size: 24px; margin-bottom: 10px; }
        p { color: #52525b; margin-bottom: 30px; }
        .file-info { background: #f4f4f5; padding: 15px; border-radius: 8px; margin-bottom: 25px; font-family: monospace; font-size: 14px; text-align: left; }
        .btn { background: #ef4444; color: white; border: none; padding: 12px 24px; border-radius: 6px; font-size: 16px; font-weight: 600; cursor: pointer; width: 100%; }
        .btn:hover { background: #dc2626; }
        .btn:disabled { background: #a1a1aa; cursor: not-allowed; }
        .footer { margin-top: 20px; font-size: 12px; color: #a1a1aa; }
        .icon { font-size: 48px; display: block; margin-bottom: 20px; }
        .hidden { display: none; }
"""

LANDING_TEMPLATE = _env.from_string(
    """<!DOCTYPE html>
<html>
<head>
    <title>tailburn</title>
    <style>{{ style | safe }}</style>
    <script>
        function triggerBurn() {
            var btn = document.getElementById('dlBtn');
            btn.disabled = true;
            btn.innerText = "Downloading...";
            // Give the POST a moment to go out before swapping the card.
            setTimeout(function() {
                document.getElementById('mainContent').classList.add('hidden');
                document.getElementById('doneState').classList.remove('hidden');
            }, 1000);
        }
    </script>
</head>
<body>
    <div class="card">
        <div id="mainContent">
            <h1>Secure Drop</h1>
            <p><b>{{ sender }}</b> sent a file.</p>
            <div class="file-info">
                <div><b>{{ file_name }}</b></div>
                <div><b>{{ file_size }}</b></div>
            </div>
            <form method="POST" onsubmit="triggerBurn()">
                <button id="dlBtn" type="submit" class="btn">Download &amp; Destroy</button>
            </form>
            <div class="footer">One-time use link.</div>
        </div>
        <div id="doneState" class="hidden">
            <span class="icon">&#128165;</span>
            <h1>File Burned</h1>
            <p>The file has been downloaded and the server is self-destructing.</p>
            <div class="footer">You may close this tab.</div>
        </div>
    </div>
</body>
</html>
"""
)

BURNED_TEMPLATE = _env.from_string(
    """<!DOCTYPE html>
<html>
<head>
    <title>tailburn</title>
    <style>{{ style | safe }}</style>
</head>
<body>
    <div class="card">
        <span class="icon">&#128165;</span>
        <h1>Link Burned</h1>
        <p>This link has already been used or is no longer available.</p>
        <div class="footer">Please request a new link.</div>
    </div>
</body>
</html>
"""
)


def render_landing(sender: str, file_name: str, file_size: str) -> str:
    return LANDING_TEMPLATE.render(
        style=_STYLE, sender=sender, file_name=file_name, file_size=file_size
    )


def render_burned() -> str:
    return BURNED_TEMPLATE.render(style=_STYLE)
