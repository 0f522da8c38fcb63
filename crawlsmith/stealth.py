"""
FILE DESCRIPTION: Anti-detection helpers for the headless browser and challenge-page fingerprinting.
KEY FUNCTIONS/CLASSES: STEALTH_SCRIPT, launch_args, pick_user_agent, detect_challenge_page
"""

import random

from crawlsmith.core import USER_AGENT
from crawlsmith.models import ChallengeKind

# Rotation pool used when random user agents are requested
USER_AGENTS = [
    USER_AGENT,
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
]

BASIC_LAUNCH_ARGS = [
    "--disable-gpu",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
]

STEALTH_LAUNCH_ARGS = BASIC_LAUNCH_ARGS + [
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-infobars",
    "--disable-plugins-discovery",
    "--disable-default-apps",
    "--enable-features=NetworkService,NetworkServiceInProcess",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--use-fake-ui-for-media-stream",
    "--use-fake-device-for-media-stream",
    "--start-maximized",
    "--lang=en-US,en",
    "--ignore-certificate-errors",
    "--allow-running-insecure-content",
]

# Playwright adds --enable-automation by default
STEALTH_IGNORE_DEFAULT_ARGS = ["--enable-automation"]

VIEWPORT = {"width": 1920, "height": 1080}

# Runs before any page script. Patches the navigator/window signals headless Chrome leaks.
STEALTH_SCRIPT = """
(() => {
    'use strict';

    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined,
        configurable: true
    });
    delete Object.getPrototypeOf(navigator).webdriver;

    const mockPlugins = [
        { name: 'Chrome PDF Plugin', description: 'Portable Document Format', filename: 'internal-pdf-viewer', length: 1 },
        { name: 'Chrome PDF Viewer', description: '', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai', length: 1 },
        { name: 'Native Client', description: '', filename: 'internal-nacl-plugin', length: 2 }
    ];
    const pluginArray = Object.create(PluginArray.prototype);
    mockPlugins.forEach((p, i) => {
        const plugin = Object.create(Plugin.prototype);
        Object.defineProperties(plugin, {
            name: { value: p.name, enumerable: true },
            description: { value: p.description, enumerable: true },
            filename: { value: p.filename, enumerable: true },
            length: { value: p.length, enumerable: true }
        });
        pluginArray[i] = plugin;
        pluginArray[p.name] = plugin;
    });
    Object.defineProperty(pluginArray, 'length', { value: mockPlugins.length });
    Object.defineProperty(pluginArray, 'item', { value: (i) => pluginArray[i] || null });
    Object.defineProperty(pluginArray, 'namedItem', { value: (n) => pluginArray[n] || null });
    Object.defineProperty(pluginArray, 'refresh', { value: () => {} });
    Object.defineProperty(navigator, 'plugins', { get: () => pluginArray, configurable: true });

    const mockMimeTypes = [
        { type: 'application/pdf', description: 'Portable Document Format', suffixes: 'pdf' },
        { type: 'text/pdf', description: 'Portable Document Format', suffixes: 'pdf' }
    ];
    const mimeTypeArray = Object.create(MimeTypeArray.prototype);
    mockMimeTypes.forEach((m, i) => {
        const mimeType = Object.create(MimeType.prototype);
        Object.defineProperties(mimeType, {
            type: { value: m.type, enumerable: true },
            description: { value: m.description, enumerable: true },
            suffixes: { value: m.suffixes, enumerable: true },
            enabledPlugin: { value: pluginArray[0], enumerable: true }
        });
        mimeTypeArray[i] = mimeType;
        mimeTypeArray[m.type] = mimeType;
    });
    Object.defineProperty(mimeTypeArray, 'length', { value: mockMimeTypes.length });
    Object.defineProperty(mimeTypeArray, 'item', { value: (i) => mimeTypeArray[i] || null });
    Object.defineProperty(mimeTypeArray, 'namedItem', { value: (n) => mimeTypeArray[n] || null });
    Object.defineProperty(navigator, 'mimeTypes', { get: () => mimeTypeArray, configurable: true });

    Object.defineProperty(navigator, 'languages', {
        get: () => Object.freeze(['en-US', 'en']),
        configurable: true
    });

    if (!window.chrome) {
        Object.defineProperty(window, 'chrome', { value: {}, writable: true, enumerable: true, configurable: false });
    }
    if (!window.chrome.runtime) {
        window.chrome.runtime = {
            OnInstalledReason: { CHROME_UPDATE: 'chrome_update', INSTALL: 'install', SHARED_MODULE_UPDATE: 'shared_module_update', UPDATE: 'update' },
            PlatformOs: { ANDROID: 'android', CROS: 'cros', LINUX: 'linux', MAC: 'mac', OPENBSD: 'openbsd', WIN: 'win' },
            get id() { return undefined; },
            connect: function() {},
            sendMessage: function() {}
        };
    }

    const originalQuery = Permissions.prototype.query;
    Permissions.prototype.query = function(parameters) {
        if (parameters.name === 'notifications') {
            return Promise.resolve({ state: Notification.permission });
        }
        return originalQuery.call(this, parameters);
    };

    const getParameterProxyHandler = {
        apply: function(target, ctx, args) {
            const param = args[0];
            const result = Reflect.apply(target, ctx, args);
            if (param === 37445) { return 'Intel Inc.'; }               // UNMASKED_VENDOR_WEBGL
            if (param === 37446) { return 'Intel Iris OpenGL Engine'; } // UNMASKED_RENDERER_WEBGL
            return result;
        }
    };
    try {
        const getParameter = WebGLRenderingContext.prototype.getParameter;
        WebGLRenderingContext.prototype.getParameter = new Proxy(getParameter, getParameterProxyHandler);
    } catch (e) {}
    try {
        const getParameter2 = WebGL2RenderingContext.prototype.getParameter;
        WebGL2RenderingContext.prototype.getParameter = new Proxy(getParameter2, getParameterProxyHandler);
    } catch (e) {}

    try {
        Object.defineProperty(HTMLIFrameElement.prototype, 'contentWindow', {
            get: function() { return this.contentDocument?.defaultView || null; }
        });
    } catch (e) {}

    const nativeToString = Function.prototype.toString;
    Function.prototype.toString = function() {
        if (this === Permissions.prototype.query) {
            return 'function query() { [native code] }';
        }
        return nativeToString.call(this);
    };

    if (navigator.hardwareConcurrency === 0) {
        Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => 4, configurable: true });
    }
    if (navigator.deviceMemory === undefined || navigator.deviceMemory === 0) {
        Object.defineProperty(navigator, 'deviceMemory', { get: () => 8, configurable: true });
    }
})();
"""


def launch_args(stealth):
    return list(STEALTH_LAUNCH_ARGS if stealth else BASIC_LAUNCH_ARGS)


def pick_user_agent(randomize=False):
    if randomize:
        return random.choice(USER_AGENTS)
    return USER_AGENTS[0]


# === CHALLENGE PAGE FINGERPRINTS ===

_CLOUDFLARE_TITLES = ("just a moment", "attention required")
_CLOUDFLARE_HTML = ("cf-challenge", "cf_chl_opt")
_TURNSTILE_HTML = ("challenges.cloudflare.com/turnstile", "cf-turnstile")
_HCAPTCHA_HTML = ("hcaptcha.com", "h-captcha")
_RECAPTCHA_HTML = ("google.com/recaptcha", "g-recaptcha")
_ANTI_BOT_TITLES = ("access denied", "blocked", "bot detection")
_ANTI_BOT_HTML = ("robot or human",)


def detect_challenge_page(title, html):
    """
    Returns the ChallengeKind of a bot-verification page, or None for real content.
    Checked in order: Cloudflare, Turnstile, hCaptcha, reCAPTCHA, generic block pages.
    """
    t = (title or "").lower()
    h = (html or "").lower()

    if any(m in t for m in _CLOUDFLARE_TITLES) or any(m in h for m in _CLOUDFLARE_HTML):
        return ChallengeKind.CLOUDFLARE
    if any(m in h for m in _TURNSTILE_HTML):
        return ChallengeKind.CLOUDFLARE_TURNSTILE
    if any(m in h for m in _HCAPTCHA_HTML):
        return ChallengeKind.HCAPTCHA
    if any(m in h for m in _RECAPTCHA_HTML):
        return ChallengeKind.RECAPTCHA
    if any(m in t for m in _ANTI_BOT_TITLES) or any(m in h for m in _ANTI_BOT_HTML):
        return ChallengeKind.ANTI_BOT
    return None
