"""
Configuration constants for the realtime connection load test.
"""

# ============================================================================
# VIRTUAL USER WORKFLOW DEFAULTS
# ============================================================================
# Every key can be overridden per run through the virtual user's ``vars`` bag
# (values coming from environment files arrive as strings and are coerced).
WORKFLOW_DEFAULTS = {
    'PERSONAL_PATH': '/personal-designs',  # Page that opens the realtime connection
    'COOKIE_NAME': 'laravel_session',  # Fragment of the session cookie name
    'ECHO_TIMEOUT_MS': 20000,  # How long to poll for "connected" per page
    'CONNECTIONS_PER_INSTANCE': 4,  # Realtime connections per virtual user
    'AUTH_PATH': '/auth/magic-login?token=dev',  # Used to derive AUTH_URL when not set
    'THINK_TIME_MS': 30000,  # Dwell period with all connections held open
    'FANOUT_STRATEGY': 'parallel-tab',  # 'parallel-tab' or 'same-page'
    'PARTIAL_POLICY': 'degraded',  # 'degraded' records a shortfall, 'strict' fails the run
    'ISOLATE_CONTEXTS': False,  # Open secondary pages in their own browser contexts
    'SCREENSHOT_DIR': 'screenshots',  # Where auth failure screenshots go
    'POLL_INTERVAL_MS': 250,  # Connection state poll interval
}

FANOUT_STRATEGIES = ('parallel-tab', 'same-page')
PARTIAL_POLICIES = ('degraded', 'strict')

# ============================================================================
# NAVIGATION TIMEOUTS (milliseconds)
# ============================================================================
PRIMARY_NAV_TIMEOUT_MS = 60000
SECONDARY_NAV_TIMEOUT_MS = 30000  # Shorter, static assets should already be cached
HOP_NAV_TIMEOUT_MS = 30000
LOAD_STATE_TIMEOUT_MS = 10000

# Friendlier UA so headless Chrome is not blocked by the target
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124 Safari/537.36"
)

# ============================================================================
# LOAD RUNNER CONFIGURATION
# ============================================================================
LOAD_TEST_CONFIG = {
    'target': 'https://dev.artistly.ai',  # Base address of the application under test
    'virtual_users': 10,  # Total virtual users to launch
    'spawn_interval_s': 0.5,  # Delay between virtual user launches (0 = all at once)
    'max_concurrent_users': 100,  # Hard cap on virtual users running at the same time
    'dynamic_resource_calculation': False,  # If True, cap concurrency based on host resources
    'headless': True,
    'report_dir': 'reports',  # Outcome CSV / JSON summary land here
    'vars': {},  # Per-run overrides for WORKFLOW_DEFAULTS
    # Session Tracking Configuration
    'enable_session_tracking': True,  # Periodic tracking reports while the run is in progress
    'tracking_report_interval': 60,  # Seconds between tracking reports
}
