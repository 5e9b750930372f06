"""Server-rendered dashboard pages.

Pages are thin HTML shells styled with the Tailwind CDN. Data is loaded in
the browser from the JSON API using the ``privy-token`` cookie as bearer token.
"""

from html import escape

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from .models import PAID_PLANS, PLAN_FEATURES, PLAN_PRICES, Plan

router = APIRouter(include_in_schema=False)

HTML_BS = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title} | Multi-RPC</title>
    <script src="https://cdn.tailwindcss.com"></script>
</head>
<body class="bg-gray-50 text-gray-900 font-sans">
    {nav}
    <div class="max-w-5xl mx-auto py-12 px-4 sm:px-6 lg:px-8">
        {content}
    </div>
    <script>{script}</script>
</body>
</html>
"""

NAV_LINKS = [
    ("/dashboard", "Overview"),
    ("/dashboard/keys", "API Keys"),
    ("/dashboard/billing", "Billing"),
    ("/dashboard/analytics", "Analytics"),
    ("/dashboard/endpoints", "Endpoints"),
    ("/dashboard/monitoring", "Monitoring"),
    ("/dashboard/settings", "Settings"),
    ("/dashboard/profile", "Profile"),
]

# Shared browser helper: authenticated fetch against the JSON API
API_JS = """
const token = (document.cookie.split('; ').find(c => c.startsWith('privy-token=')) || '').split('=')[1] || '';
async function api(path, options = {}) {
    const headers = Object.assign({'Content-Type': 'application/json', 'Authorization': 'Bearer ' + token}, options.headers || {});
    const res = await fetch(path, Object.assign({}, options, {headers}));
    const body = await res.json();
    if (!res.ok) throw new Error(body.error || res.statusText);
    return body;
}
function text(id, value) { document.getElementById(id).textContent = value; }
"""


def _nav(active: str) -> str:
    links = "".join(
        f'<a href="{href}" class="px-3 py-2 rounded-md text-sm font-medium '
        f'{"bg-indigo-700 text-white" if href == active else "text-indigo-100 hover:bg-indigo-500"}">{label}</a>'
        for href, label in NAV_LINKS
    )
    return f"""
    <nav class="bg-indigo-600">
        <div class="max-w-5xl mx-auto px-4 flex items-center h-16 space-x-4">
            <a href="/" class="text-white font-bold mr-6">Multi-RPC</a>
            {links}
        </div>
    </nav>
    """


def render(title: str, content: str, active: str | None = None, script: str = "") -> HTMLResponse:
    nav = _nav(active) if active else ""
    return HTMLResponse(HTML_BS.format(title=escape(title), nav=nav, content=content, script=API_JS + script))


def _plan_card(plan: Plan, action: str) -> str:
    features = "".join(f'<li class="py-1">{escape(f)}</li>' for f in PLAN_FEATURES[plan])
    return f"""
    <div class="bg-white shadow rounded-lg p-6 flex flex-col">
        <h3 class="text-lg font-medium">{plan.value.title()}</h3>
        <p class="text-3xl font-bold my-4">${PLAN_PRICES[plan]}<span class="text-sm text-gray-500">/mo</span></p>
        <ul class="text-sm text-gray-600 flex-1">{features}</ul>
        {action}
    </div>
    """


@router.get("/", response_class=HTMLResponse)
async def landing():
    cards = "".join(
        _plan_card(plan, '<a href="/auth" class="mt-6 text-center text-indigo-600 hover:text-indigo-900">Get started</a>')
        for plan in Plan
    )
    return render(
        "Home",
        f"""
        <div class="text-center">
            <h1 class="text-4xl font-bold mb-4">Multi-RPC</h1>
            <p class="text-xl text-gray-600 mb-8">
                One API key, many Solana RPC providers. Health-checked routing with automatic failover.
            </p>
            <a href="/auth" class="inline-flex items-center px-4 py-2 rounded-md text-white bg-indigo-600 hover:bg-indigo-700">
                Sign in
            </a>
        </div>
        <div class="grid grid-cols-1 md:grid-cols-4 gap-4 mt-12">{cards}</div>
        """,
    )


@router.get("/auth", response_class=HTMLResponse)
async def auth_page():
    return render(
        "Sign in",
        """
        <div class="max-w-md mx-auto bg-white shadow rounded-lg p-6">
            <h1 class="text-2xl font-bold mb-6">Create an account</h1>
            <form id="signup" class="space-y-4">
                <input name="email" type="email" placeholder="you@example.com" required class="block w-full border rounded-md p-2">
                <input name="name" type="text" placeholder="Name (optional)" class="block w-full border rounded-md p-2">
                <input name="password" type="password" placeholder="Password (8+ characters)" required minlength="8" class="block w-full border rounded-md p-2">
                <button type="submit" class="w-full px-4 py-2 rounded-md text-white bg-indigo-600 hover:bg-indigo-700">Sign up</button>
            </form>
            <p id="result" class="text-sm mt-4"></p>
        </div>
        """,
        script="""
        document.getElementById('signup').addEventListener('submit', async (e) => {
            e.preventDefault();
            const data = Object.fromEntries(new FormData(e.target));
            if (!data.name) delete data.name;
            try {
                const body = await api('/api/auth/signup', {method: 'POST', body: JSON.stringify(data)});
                text('result', 'Account created. Your API key: ' + body.apiKey);
            } catch (err) { text('result', err.message); }
        });
        """,
    )


@router.get("/dashboard", response_class=HTMLResponse)
async def dashboard_page():
    return render(
        "Overview",
        """
        <h1 class="text-3xl font-bold mb-8">Overview</h1>
        <div class="grid grid-cols-1 md:grid-cols-3 gap-4">
            <div class="bg-white shadow rounded-lg p-6"><p class="text-sm text-gray-500">Plan</p><p id="plan" class="text-2xl font-bold">-</p></div>
            <div class="bg-white shadow rounded-lg p-6"><p class="text-sm text-gray-500">Requests this month</p><p id="requests" class="text-2xl font-bold">-</p></div>
            <div class="bg-white shadow rounded-lg p-6"><p class="text-sm text-gray-500">API keys</p><p id="keys" class="text-2xl font-bold">-</p></div>
        </div>
        """,
        active="/dashboard",
        script="""
        api('/api/user/dashboard').then(d => {
            text('plan', d.subscription ? d.subscription.plan : 'FREE');
            const limit = d.limits.requests < 0 ? 'unlimited' : d.limits.requests.toLocaleString();
            text('requests', d.usage.requests.toLocaleString() + ' / ' + limit);
            text('keys', d.apiKeys.filter(k => k.active).length);
        });
        """,
    )


@router.get("/dashboard/keys", response_class=HTMLResponse)
async def keys_page():
    return render(
        "API Keys",
        """
        <h1 class="text-3xl font-bold mb-8">API Keys</h1>
        <form id="create" class="flex mb-6">
            <input name="name" placeholder="Key name" required class="border rounded-md p-2 mr-2 flex-1">
            <button class="px-4 py-2 rounded-md text-white bg-indigo-600 hover:bg-indigo-700">Create key</button>
        </form>
        <p id="new-key" class="font-mono text-sm text-green-700 mb-4"></p>
        <ul id="list" class="bg-white shadow rounded-lg divide-y divide-gray-200"></ul>
        """,
        active="/dashboard/keys",
        script="""
        async function load() {
            const {keys} = await api('/api/keys');
            const list = document.getElementById('list');
            list.innerHTML = '';
            for (const k of keys) {
                const li = document.createElement('li');
                li.className = 'p-4 flex justify-between';
                li.textContent = k.name + '  ' + k.prefix + (k.active ? '' : '  (revoked)');
                const del = document.createElement('button');
                del.textContent = 'Delete';
                del.className = 'text-red-600';
                del.onclick = async () => { await api('/api/keys?id=' + k.id, {method: 'DELETE'}); load(); };
                li.appendChild(del);
                list.appendChild(li);
            }
        }
        document.getElementById('create').addEventListener('submit', async (e) => {
            e.preventDefault();
            const key = await api('/api/keys', {method: 'POST', body: JSON.stringify({name: e.target.name.value})});
            text('new-key', 'Copy this key now, it will not be shown again: ' + key.key);
            e.target.reset();
            load();
        });
        load();
        """,
    )


@router.get("/dashboard/billing", response_class=HTMLResponse)
async def billing_page():
    cards = "".join(
        _plan_card(
            plan,
            f'<button data-plan="{plan.value}" class="checkout mt-6 px-4 py-2 rounded-md text-white '
            f'bg-indigo-600 hover:bg-indigo-700">Upgrade</button>',
        )
        for plan in PAID_PLANS
    )
    return render(
        "Billing",
        f"""
        <h1 class="text-3xl font-bold mb-2">Billing</h1>
        <p class="text-gray-600 mb-8">Current plan: <strong id="plan">-</strong> <span id="status" class="text-sm text-gray-500"></span></p>
        <div class="grid grid-cols-1 md:grid-cols-3 gap-4">{cards}</div>
        <h2 class="text-xl font-bold mt-12 mb-4">Invoices</h2>
        <ul id="invoices" class="bg-white shadow rounded-lg divide-y divide-gray-200"></ul>
        """,
        active="/dashboard/billing",
        script="""
        api('/api/user/subscription').then(({subscription}) => {
            text('plan', subscription.plan);
            text('status', subscription.status);
        });
        api('/api/user/invoices').then(({invoices}) => {
            const list = document.getElementById('invoices');
            for (const inv of invoices) {
                const li = document.createElement('li');
                li.className = 'p-4';
                li.textContent = new Date(inv.date).toLocaleDateString() + '  ' + inv.amount.toFixed(2) + ' ' + inv.currency.toUpperCase() + '  ' + inv.status;
                list.appendChild(li);
            }
        });
        for (const btn of document.querySelectorAll('.checkout')) {
            btn.onclick = async () => {
                const {url} = await api('/api/billing/create-checkout-session', {method: 'POST', body: JSON.stringify({plan: btn.dataset.plan})});
                window.location = url;
            };
        }
        """,
    )


@router.get("/dashboard/monitoring", response_class=HTMLResponse)
async def monitoring_page(request: Request):
    balancer = request.app.state.balancer
    snapshot = balancer.snapshot()
    rows = ""
    for url in balancer.endpoints:
        health = snapshot.get(url)
        if health is None:
            status, color, latency = "unknown", "text-gray-500", "-"
        elif health.healthy:
            status, color, latency = "healthy", "text-green-600", f"{health.latency_ms or 0} ms"
        else:
            status, color, latency = "unhealthy", "text-red-600", "-"
        rows += f"""
        <tr>
            <td class="p-3 font-mono text-sm">{escape(url)}</td>
            <td class="p-3 {color}">{status}</td>
            <td class="p-3 text-right">{latency}</td>
        </tr>
        """
    return render(
        "Monitoring",
        f"""
        <h1 class="text-3xl font-bold mb-8">Endpoint Monitoring</h1>
        <table class="min-w-full bg-white shadow rounded-lg">
            <thead><tr class="text-left text-sm text-gray-500"><th class="p-3">Endpoint</th><th class="p-3">Status</th><th class="p-3 text-right">Latency</th></tr></thead>
            <tbody>{rows}</tbody>
        </table>
        <h2 class="text-xl font-bold mt-12 mb-4">Recent alerts</h2>
        <ul id="alerts" class="bg-white shadow rounded-lg divide-y divide-gray-200"></ul>
        """,
        active="/dashboard/monitoring",
        script="""
        api('/api/rpc/alerts').then(({alerts}) => {
            const list = document.getElementById('alerts');
            for (const a of alerts) {
                const li = document.createElement('li');
                li.className = 'p-4 text-sm';
                li.textContent = a.timestamp + '  [' + a.type + ']  ' + a.message + '  ' + a.endpoint;
                list.appendChild(li);
            }
        });
        """,
    )


@router.get("/dashboard/settings", response_class=HTMLResponse)
async def settings_page():
    return render(
        "Settings",
        """
        <h1 class="text-3xl font-bold mb-8">Settings</h1>
        <form id="settings" class="bg-white shadow rounded-lg p-6 space-y-4">
            <label class="flex items-center"><input type="checkbox" name="email" class="mr-2">Email notifications</label>
            <label class="flex items-center"><input type="checkbox" name="apiErrors" class="mr-2">API error alerts</label>
            <label class="flex items-center"><input type="checkbox" name="usageAlerts" class="mr-2">Usage alerts</label>
            <label class="flex items-center"><input type="checkbox" name="weeklyReports" class="mr-2">Weekly reports</label>
            <button class="px-4 py-2 rounded-md text-white bg-indigo-600 hover:bg-indigo-700">Save</button>
            <p id="saved" class="text-sm text-green-700"></p>
        </form>
        """,
        active="/dashboard/settings",
        script="""
        let current;
        const form = document.getElementById('settings');
        api('/api/user/settings').then(({settings}) => {
            current = settings;
            for (const [k, v] of Object.entries(settings.notifications)) {
                if (form.elements[k]) form.elements[k].checked = v;
            }
        });
        form.addEventListener('submit', async (e) => {
            e.preventDefault();
            for (const k of Object.keys(current.notifications)) {
                if (form.elements[k]) current.notifications[k] = form.elements[k].checked;
            }
            await api('/api/user/settings', {method: 'PUT', body: JSON.stringify({settings: current})});
            text('saved', 'Settings saved');
        });
        """,
    )


@router.get("/dashboard/analytics", response_class=HTMLResponse)
async def analytics_page():
    return render(
        "Analytics",
        """
        <div class="flex justify-between items-center mb-8">
            <h1 class="text-3xl font-bold">Analytics</h1>
            <select id="range" class="border rounded-md p-2">
                <option value="24h">Last 24 hours</option>
                <option value="7d">Last 7 days</option>
                <option value="30d">Last 30 days</option>
            </select>
        </div>
        <div class="grid grid-cols-1 md:grid-cols-4 gap-4">
            <div class="bg-white shadow rounded-lg p-6"><p class="text-sm text-gray-500">Requests</p><p id="total" class="text-2xl font-bold">-</p></div>
            <div class="bg-white shadow rounded-lg p-6"><p class="text-sm text-gray-500">Success rate</p><p id="success" class="text-2xl font-bold">-</p></div>
            <div class="bg-white shadow rounded-lg p-6"><p class="text-sm text-gray-500">Avg latency</p><p id="latency" class="text-2xl font-bold">-</p></div>
            <div class="bg-white shadow rounded-lg p-6"><p class="text-sm text-gray-500">Requests/s</p><p id="rps" class="text-2xl font-bold">-</p></div>
        </div>
        <h2 class="text-xl font-bold mt-12 mb-4">Top methods</h2>
        <ul id="methods" class="bg-white shadow rounded-lg divide-y divide-gray-200"></ul>
        """,
        active="/dashboard/analytics",
        script="""
        async function load() {
            const a = await api('/api/rpc/analytics?timeRange=' + document.getElementById('range').value);
            text('total', a.totalRequests.toLocaleString());
            text('success', a.successRate + '%');
            text('latency', a.averageLatency + ' ms');
            text('rps', a.requestsPerSecond);
            const list = document.getElementById('methods');
            list.innerHTML = '';
            for (const m of a.topMethods) {
                const li = document.createElement('li');
                li.className = 'p-4 flex justify-between text-sm';
                li.textContent = m.method + '  ' + m.count.toLocaleString() + ' (' + m.percentage + '%)';
                list.appendChild(li);
            }
        }
        document.getElementById('range').addEventListener('change', load);
        load();
        """,
    )


@router.get("/dashboard/endpoints", response_class=HTMLResponse)
async def endpoints_page():
    return render(
        "Endpoints",
        """
        <h1 class="text-3xl font-bold mb-8">Custom Endpoints</h1>
        <form id="add" class="flex mb-6 space-x-2">
            <input name="name" placeholder="Name" required class="border rounded-md p-2">
            <input name="url" type="url" placeholder="https://..." required class="border rounded-md p-2 flex-1">
            <input name="region" placeholder="Region" class="border rounded-md p-2">
            <button class="px-4 py-2 rounded-md text-white bg-indigo-600 hover:bg-indigo-700">Add endpoint</button>
        </form>
        <p id="error" class="text-sm text-red-600 mb-4"></p>
        <ul id="list" class="bg-white shadow rounded-lg divide-y divide-gray-200"></ul>
        """,
        active="/dashboard/endpoints",
        script="""
        async function load() {
            const {endpoints} = await api('/api/rpc/endpoints');
            const list = document.getElementById('list');
            list.innerHTML = '';
            for (const ep of endpoints) {
                const li = document.createElement('li');
                li.className = 'p-4 flex justify-between text-sm';
                li.textContent = ep.name + '  ' + ep.url + '  ' + ep.region + '  ' + (ep.healthy ? ep.latency + ' ms' : 'unreachable');
                const del = document.createElement('button');
                del.textContent = 'Remove';
                del.className = 'text-red-600';
                del.onclick = async () => { await api('/api/rpc/endpoints?id=' + ep.id, {method: 'DELETE'}); load(); };
                li.appendChild(del);
                list.appendChild(li);
            }
        }
        document.getElementById('add').addEventListener('submit', async (e) => {
            e.preventDefault();
            const data = Object.fromEntries(new FormData(e.target));
            if (!data.region) delete data.region;
            try {
                await api('/api/rpc/endpoints', {method: 'POST', body: JSON.stringify(data)});
                text('error', '');
                e.target.reset();
                load();
            } catch (err) { text('error', err.message); }
        });
        load();
        """,
    )


@router.get("/dashboard/profile", response_class=HTMLResponse)
async def profile_page():
    return render(
        "Profile",
        """
        <h1 class="text-3xl font-bold mb-8">Profile</h1>
        <form id="profile" class="bg-white shadow rounded-lg p-6 space-y-4">
            <p class="text-sm text-gray-500">Email: <span id="email">-</span></p>
            <p class="text-sm text-gray-500">Wallet: <span id="wallet" class="font-mono">-</span></p>
            <input name="name" placeholder="Display name" class="block w-full border rounded-md p-2">
            <button class="px-4 py-2 rounded-md text-white bg-indigo-600 hover:bg-indigo-700">Save</button>
            <p id="saved" class="text-sm text-green-700"></p>
        </form>
        """,
        active="/dashboard/profile",
        script="""
        const form = document.getElementById('profile');
        api('/api/user/me').then(u => {
            text('email', u.email || '-');
            text('wallet', u.walletAddress || '-');
            form.elements.name.value = u.name || '';
        });
        form.addEventListener('submit', async (e) => {
            e.preventDefault();
            await api('/api/user/profile', {method: 'PUT', body: JSON.stringify({name: form.elements.name.value})});
            text('saved', 'Profile saved');
        });
        """,
    )
