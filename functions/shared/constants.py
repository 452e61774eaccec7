"""
Shared constants for pkgintel.
"""

# External APIs
NPM_REGISTRY = "https://registry.npmjs.org"
NPM_API = "https://api.npmjs.org"
OSV_API = "https://api.osv.dev"
GITHUB_API = "https://api.github.com"
OSS_INDEX_API = "https://ossindex.sonatype.org/api/v3"
BACKSTABBERS_README_URL = (
    "https://raw.githubusercontent.com/backstabbers-knife-collection/"
    "backstabbers-knife-collection/main/README.md"
)

USER_AGENT = "pkgintel-collector/1.0"

# Aspect names used as keys in collection results
ASPECT_DEPENDENCIES = "dependencies"
ASPECT_VULNERABILITIES = "vulnerabilities"
ASPECT_GITHUB = "github"
ASPECT_STATIC_ANALYSIS = "staticAnalysis"

# Vulnerability source filter values
VULNERABILITY_SOURCES = ["osv", "github", "ossindex", "npm"]

# npm package names are limited to 214 characters
MAX_PACKAGE_NAME_LENGTH = 214
