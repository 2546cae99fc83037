#!/usr/bin/env python3
"""
Local control panel for a headless clock terminal.
Shows the scanning session and lets floor staff enter clock-out quantities,
type a code by hand, and point the terminal at a different server.
"""

import logging
from datetime import datetime

from flask import Flask, jsonify, request

from terminal_errors import CommunicationError, InvalidQuantity

app = Flask(__name__)

# Attached by terminal_runtime.main()
app.orchestrator = None
app.terminal_config = None


def _orchestrator():
    orchestrator = getattr(app, 'orchestrator', None)
    if orchestrator is None:
        raise RuntimeError('terminal runtime not attached')
    return orchestrator


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@app.errorhandler(RuntimeError)
def _runtime_not_ready(e):
    logging.error(f"Control panel error: {e}")
    return jsonify({'success': False, 'error': str(e)}), 503


@app.route('/')
def index():
    """Terminal page (polls /api/status)"""
    return """
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>Work Order Clock Terminal</title>
        <style>
            body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f5f5f5; padding: 20px; }
            .card { background: white; border-radius: 8px; padding: 20px; box-shadow: 0 2px 8px rgba(0,0,0,0.1); margin-bottom: 16px; }
            .hint { font-size: 28px; font-weight: bold; color: #667eea; }
            .error { color: #c0392b; font-weight: bold; }
            .success { color: #27ae60; font-weight: bold; }
            #logs { font-family: monospace; font-size: 13px; max-height: 320px; overflow-y: auto; }
            .btn { padding: 10px 20px; border: none; border-radius: 5px; cursor: pointer; background: #667eea; color: white; }
        </style>
    </head>
    <body>
        <div class="card">
            <div class="hint" id="hint">Loading...</div>
            <div id="hint-detail"></div>
            <div>User: <span id="user">-</span> &middot; Server: <span id="server">-</span></div>
            <div class="error" id="error"></div>
            <div class="success" id="success"></div>
        </div>
        <div class="card" id="quantity-card" style="display:none">
            <div>Clock out <span id="wo"></span></div>
            <input id="qty" type="number" min="0" step="any" value="1">
            <button class="btn" onclick="confirmQty()">Confirm</button>
            <button class="btn" onclick="post('/api/quantity/cancel', {})">Cancel</button>
        </div>
        <div class="card">
            <input id="code" placeholder="Type a code">
            <button class="btn" onclick="post('/api/scan', {code: document.getElementById('code').value})">Submit</button>
            <button class="btn" onclick="post('/api/logs/clear', {})">Clear logs</button>
        </div>
        <div class="card"><div id="logs"></div></div>
        <script>
            function post(url, body) {
                return fetch(url, {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body)})
                    .then(r => r.json()).then(d => { if (!d.success) alert(d.error || 'Error'); refresh(); });
            }
            function confirmQty() { post('/api/quantity', {qty: document.getElementById('qty').value}); }
            function refresh() {
                fetch('/api/status').then(r => r.json()).then(s => {
                    document.getElementById('hint').textContent = s.scanner_hint.title;
                    document.getElementById('hint-detail').textContent = s.scanner_hint.detail;
                    document.getElementById('user').textContent = s.current_user || '-';
                    document.getElementById('server').textContent = s.server_connected ? 'connected' : 'offline';
                    document.getElementById('error').textContent = s.error_message;
                    document.getElementById('success').textContent = s.success_message;
                    const q = s.quantity_request;
                    document.getElementById('quantity-card').style.display = q ? 'block' : 'none';
                    if (q) document.getElementById('wo').textContent = q.work_order_code;
                });
                fetch('/api/logs').then(r => r.json()).then(d => {
                    // Messages carry raw scanned codes; never render them as HTML.
                    const rows = d.logs.slice().reverse().map(e => {
                        const row = document.createElement('div');
                        row.textContent = '[' + new Date(e.timestamp * 1000).toLocaleTimeString() + '] ' + e.message;
                        return row;
                    });
                    document.getElementById('logs').replaceChildren(...rows);
                });
            }
            setInterval(refresh, 1000);
            refresh();
        </script>
    </body>
    </html>
    """, 200


@app.route('/api/status')
def get_status():
    """Current session state"""
    status = _orchestrator().snapshot()
    status['timestamp'] = datetime.now().isoformat()
    config = getattr(app, 'terminal_config', None)
    if config is not None:
        status['terminal_id'] = config.get('terminal_id')
    return jsonify(status)


@app.route('/api/logs')
def get_logs():
    entries = _orchestrator().activity.entries()
    return jsonify({'logs': [entry.to_dict() for entry in entries]})


@app.route('/api/logs/clear', methods=['POST'])
def clear_logs():
    _orchestrator().clear_logs()
    return jsonify({'success': True})


@app.route('/api/messages/clear', methods=['POST'])
def clear_messages():
    orchestrator = _orchestrator()
    orchestrator.clear_error_message()
    orchestrator.clear_success_message()
    return jsonify({'success': True})


@app.route('/api/scan', methods=['POST'])
def manual_scan():
    """Feed a typed code through the same path as a scanner read"""
    code = str(_json_body().get('code') or '').strip()
    if not code:
        return jsonify({'success': False, 'error': 'code is required'}), 400
    _orchestrator().process_scanned_code(code)
    return jsonify({'success': True})


@app.route('/api/quantity', methods=['POST'])
def confirm_quantity():
    qty = _json_body().get('qty')
    try:
        _orchestrator().confirm_quantity(qty)
    except InvalidQuantity as e:
        return jsonify({'success': False, 'error': e.user_message, 'detail': str(e)}), 400
    return jsonify({'success': True})


@app.route('/api/quantity/cancel', methods=['POST'])
def cancel_quantity():
    _orchestrator().cancel_quantity()
    return jsonify({'success': True})


@app.route('/api/health/check', methods=['POST'])
def check_health():
    _orchestrator().check_server_connection()
    return jsonify({'success': True})


@app.route('/api/server', methods=['POST'])
def update_server():
    """Change the command queue server (persisted to config.json)"""
    url = str(_json_body().get('url') or '').strip()
    try:
        _orchestrator().update_server_url(url)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    config = getattr(app, 'terminal_config', None)
    if config is not None:
        try:
            config.set('server.base_url', url)
        except OSError as e:
            logging.warning(f"Server URL applied but not saved: {e}")
    logging.info(f"⚙️ Server URL updated from control panel: {url}")
    return jsonify({'success': True})


@app.route('/api/remote/queue')
def remote_queue_status():
    try:
        status = _orchestrator().client.get_queue_status()
    except CommunicationError as e:
        return jsonify({'success': False, 'error': str(e)}), 502
    return jsonify({
        'success': True,
        'running': status.running,
        'pending_commands': status.pending_commands,
        'total_commands': status.total_commands,
    })


@app.route('/api/remote/commands')
def remote_commands():
    try:
        commands = _orchestrator().client.list_commands()
    except CommunicationError as e:
        return jsonify({'success': False, 'error': str(e)}), 502
    return jsonify({
        'success': True,
        'commands': [
            {
                'id': c.id,
                'type': c.type,
                'status': c.status,
                'message': c.message,
                'timestamp': c.timestamp,
            }
            for c in commands
        ],
    })
