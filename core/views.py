from django.conf import settings
from django.http import HttpResponse, JsonResponse

HOME_PAGE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8" />
<meta name="viewport" content="width=device-width, initial-scale=1" />
<title>Gift Escrow</title>
<style>
    body {
        margin: 0;
        font-family: "Inter", system-ui, sans-serif;
        color: #1e293b;
        background: #f1f5f9;
    }
    main {
        max-width: 720px;
        margin: 12vh auto;
        padding: 2.5rem;
        background: #fff;
        border-radius: 20px;
        border-top: 6px solid #0ea5e9;
    }
    h1 {
        margin-top: 0;
    }
    dl {
        display: grid;
        grid-template-columns: max-content 1fr;
        gap: 0.75rem 1.5rem;
    }
    dt code {
        color: #0369a1;
    }
</style>
</head>
<body>
    <main>
        <h1>Gift Escrow</h1>
        <p>
            Stablecoin gifts held in escrow until the recipient claims them with a link,
            then settled on the recipient's network of choice.
        </p>
        <dl>
            <dt><code>POST /api/gifts</code></dt>
            <dd>create a gift and receive its claim link and secret</dd>
            <dt><code>GET /api/gifts/claim/&lt;code&gt;</code></dt>
            <dd>look up a gift before claiming</dd>
            <dt><code>POST /api/gifts/claim/&lt;code&gt;</code></dt>
            <dd>claim to a wallet address</dd>
            <dt><code>GET /api/networks</code></dt>
            <dd>settlement networks</dd>
        </dl>
    </main>
</body>
</html>"""


def home(request):
    return HttpResponse(HOME_PAGE_HTML, content_type="text/html; charset=utf-8")


def health(request):
    return JsonResponse({"status": "ok", "networks": sorted(settings.GIFTS_NETWORKS)})
