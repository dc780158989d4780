"""Centralized user-facing text for the wfmaint CLI."""

from __future__ import annotations

class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "wfmaint - resource-aware maintenance for CI workflow definitions and run history."
    HELP_VERBOSE = "Enable debug logging."
    HELP_PATH = "Repository root containing the workflow directory."
    HELP_JOBS = "Maximum parallel jobs (defaults to max_parallel_jobs from config)."
    HELP_NO_CACHE = "Bypass the result cache for this run."
    HELP_SECURITY_PATH = "Repository root to scan for hardcoded secrets."
    HELP_CLEANUP_DAYS = "Keep runs from the last DAYS days."
    HELP_CLEANUP_MAX_RUNS = "Keep at most MAX_RUNS runs per workflow."
    HELP_CLEANUP_DRY_RUN = "Show what would be deleted without making changes."
    HELP_CLEANUP_FORCE = "Skip the confirmation prompt."
    HELP_ANALYZE_LIMIT = "Number of recent runs to analyze."
    HELP_CACHE_SHOW = "Show cache statistics."
    HELP_CACHE_CLEAR = "Remove every cached entry."
    HELP_CACHE_PRUNE = "Remove entries older than the configured TTL."
    HELP_CONFIG_SHOW = "Show current configuration."
    HELP_CONFIG_SET = "Set a configuration value, as KEY=VALUE (repeatable)."
    HELP_CONFIG_RESET = "Restore every configuration value to its default."
    HELP_CONFIG_PATH = "Print the configuration file path."
    HELP_DOCTOR_SKIP_REMOTE = "Skip checks that require the remote command."

    ERROR_CONFIG_JSON_INVALID = "Config JSON must be an object."
    ERROR_CONFIG_VALUE_INVALID = "Config field '{field}' has an invalid value."
    ERROR_CONFIG_RANGE = "Config field '{field}' must be {rule} (got {value})."
    ERROR_CONFIG_KEY_INVALID = "Unknown config key '{key}'. Allowed keys: {allowed}."
    ERROR_CONFIG_ASSIGNMENT = "Expected KEY=VALUE, got '{value}'."
    ERROR_CACHE_OPTION_CONFLICT = "Choose only one of --show, --clear or --prune."
    ERROR_REMOTE_MISSING = (
        "`{command}` is not on PATH. Install the GitHub CLI from https://cli.github.com/."
    )
    ERROR_REMOTE_FAILED = "Remote call `{command}` failed (exit {code}): {detail}"
    ERROR_REMOTE_TIMEOUT = "Remote call `{command}` timed out after {timeout}s."
    ERROR_REMOTE_JSON = "Remote call `{command}` returned invalid JSON."
    ERROR_INTERRUPTED = "Interrupted by signal {signum}; cleanup completed."

    INFO_CACHE_USING = "Using cached {label} results ({count} entries)."
    INFO_CACHE_SUMMARY = "Cache directory: {path}\nEntries: {entries}\nSize: {size} bytes\nTTL: {ttl}s"
    INFO_CACHE_CLEARED = "Removed {count} cached entr{plural}."
    INFO_CACHE_PRUNED = "Pruned {count} expired entr{plural}."
    INFO_RESOURCES = "Host resources: memory {mem:.0f}%, cpu {cpu:.0f}%, {cores} cores; using {jobs} parallel jobs."
    WARNING_RESOURCES = "Host is under load: {reason}."
    INFO_NO_WORKFLOWS = "No workflow files found under {path}."
    INFO_VALIDATE_RUNNING = "Validating {count} workflow file{plural} under {path}..."
    INFO_SECURITY_RUNNING = "Scanning {count} file{plural} under {path} for hardcoded secrets..."
    INFO_SUMMARY = "{errors} error{errors_plural}, {warnings} warning{warnings_plural} ({completed}/{total} {label}, {failed} failed)."

    INFO_CLEANUP_ANALYZING = "Analyzing workflow runs..."
    INFO_CLEANUP_STATS = "Total runs: {total}; keeping runs newer than {cutoff}; max {max_runs} runs per workflow."
    INFO_CLEANUP_CANDIDATES = "Cleanup candidates: {count} run{plural} ({old} older than {days} days, {excess} excess)."
    INFO_CLEANUP_NONE = "Nothing to clean up."
    INFO_CLEANUP_DRY_RUN = "DRY RUN: {count} run{plural} would be deleted."
    INFO_CLEANUP_CANCELLED = "Cleanup cancelled by user."
    INFO_CLEANUP_DONE = "Deleted {deleted} run{plural}; {failed} failed."
    CONFIRM_CLEANUP = "This will permanently delete {count} workflow run{plural}. Continue?"

    INFO_ANALYZE_RUNTIME = "Recent workflow performance (last {count} runs):"
    INFO_ANALYZE_NO_RUNS = "No workflow run data available."
    INFO_ANALYZE_API = "Core API: {used}/{limit} used ({percent}%), {remaining} remaining."
    INFO_ANALYZE_API_HEALTHY = "API usage is within healthy limits."
    WARNING_ANALYZE_API_MODERATE = "Moderate API usage ({percent}%) - monitor closely."
    WARNING_ANALYZE_API_HIGH = "High API usage detected ({percent}%) - consider reducing workflow triggers."
    INFO_ANALYZE_EFFICIENCY = "Workflows: {total}; caching {caching}, conditionals {conditional}, matrix builds {matrix}."
    WARNING_ANALYZE_CACHING = "Consider adding caching to more workflows for better performance."
    INFO_API_METRICS = "API calls: {calls}, cache hits: {hits} ({rate}%), rate limit warnings: {warnings}."

    INFO_CONFIG_SAVED = "Set {key} = {value}."
    INFO_CONFIG_RESET = "Configuration reset to defaults."

    DOCTOR_TITLE = "wfmaint v{version} diagnostics"
    DOCTOR_REMOTE_FOUND = "`{command}` is available at {path}."
    DOCTOR_REMOTE_MISSING = "`{command}` is not on PATH."
    DOCTOR_REMOTE_MISSING_DETAIL = "Install the GitHub CLI from https://cli.github.com/ and run `gh auth login`."
    DOCTOR_CONFIG_EXISTS = "Using {path}."
    DOCTOR_CONFIG_DEFAULT = "No config file; defaults in use."
    DOCTOR_CONFIG_INVALID = "Config file {path} is invalid."
    DOCTOR_CACHE_WRITABLE = "{path} is writable."
    DOCTOR_CACHE_CREATED = "Created {path}."
    DOCTOR_CACHE_CANNOT_CREATE = "Cannot create {path}."
    DOCTOR_CACHE_NOT_WRITABLE = "{path} is not writable."
    DOCTOR_RESOURCES_OK = "memory {mem:.0f}%, cpu {cpu:.0f}%, {cores} cores."
    DOCTOR_RESOURCES_CONSTRAINED = "Host is constrained: {reason}."
    DOCTOR_ALL_PASSED = "All checks passed."
    DOCTOR_SOME_FAILED = "Some checks failed."

    TABLE_TITLE_ANALYZE = "Workflow performance"
    TABLE_HEADER_WORKFLOW = "Workflow"
    TABLE_HEADER_RUNS = "Runs"
    TABLE_HEADER_AVG = "Avg duration (min)"
    TABLE_HEADER_SUCCESS = "Success rate"
    TABLE_TITLE_CONFIG = "Configuration"
    TABLE_HEADER_KEY = "Key"
    TABLE_HEADER_VALUE = "Value"
