"""
EchoWrite: build script.

Usage:
    # Development install:
    pip install -e ".[test]"

    # macOS app bundle (standalone, fully self-contained):
    python3 setup.py py2app

The built app will be in the dist/ directory.
"""

import os
import sys
from setuptools import setup, find_namespace_packages

APP = ["main.py"]
APP_NAME = "EchoWrite"

DATA_FILES = []

# Check if .icns icon exists (user builds it on macOS)
ICON_FILE = "AppIcon.icns" if os.path.exists("AppIcon.icns") else None

PY2APP_OPTIONS = {
    "argv_emulation": False,
    "plist": {
        "CFBundleName": APP_NAME,
        "CFBundleDisplayName": "EchoWrite",
        "CFBundleIdentifier": "com.local.echowrite",
        "CFBundleVersion": "1.0.0",
        "CFBundleShortVersionString": "1.0.0",
        "CFBundlePackageType": "APPL",
        "LSMinimumSystemVersion": "10.15",
        "NSHumanReadableCopyright": "Local use only",
        "LSUIElement": True,
        "LSEnvironment": {
            "PYTHONDONTWRITEBYTECODE": "1",
        },
    },
    "packages": [
        "echowrite",
        "echowrite.core",
        "requests",
        "numpy",
        "watchdog",
    ],
    "includes": [
        "echowrite.core.constants",
        "echowrite.core.config",
        "echowrite.core.error_codes",
        "echowrite.core.models",
        "echowrite.core.security_utils",
        "echowrite.core.progress_store",
        "echowrite.core.extract_audio",
        "echowrite.core.transcribe_deepgram",
        "echowrite.core.transcriber",
        "echowrite.core.job_queue",
        "echowrite.core.watcher",
        "echowrite.core.pipeline",
        "sqlite3",
    ],
    "excludes": [
        "tkinter", "PyQt5", "PyQt6", "PySide2", "PySide6",
        "matplotlib", "scipy", "pandas",
        "PIL", "cv2", "torch", "tensorflow",
        "pytest", "unittest",
    ],
    "site_packages": True,
}

# Add icon if available
if ICON_FILE:
    PY2APP_OPTIONS["iconfile"] = ICON_FILE

# py2app is only needed (and only installable) when building the bundle
py2app_kwargs = {}
if "py2app" in sys.argv:
    py2app_kwargs = {
        "app": APP,
        "data_files": DATA_FILES,
        "options": {"py2app": PY2APP_OPTIONS},
        "setup_requires": ["py2app"],
    }

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Watch-folder media transcription with resumable chunked processing",
    packages=find_namespace_packages(include=["echowrite", "echowrite.*"]),
    install_requires=[
        "requests>=2.28.0",
        "numpy>=1.24",
        "watchdog>=3.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    **py2app_kwargs,
)
