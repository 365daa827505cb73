from setuptools import setup, find_packages
import os
import re

def get_version():
    init_path = os.path.join(os.path.dirname(__file__), 'src', 'sanctuarysound', '__init__.py')
    try:
        with open(init_path, 'r') as f:
            match = re.search(r'^__version__ = "([^"]+)"', f.read(), re.MULTILINE)
            return match.group(1) if match else "unknown"
    except OSError:
        return "unknown"

setup(
    name="sanctuarysound",
    version=get_version(),
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    include_package_data=True,
    install_requires=["flask>=2.0.0", "flask-cors>=3.0.0", "numpy"],
    extras_require={
        'alsa': ['pyalsaaudio'],
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'sanctuarysound-server = sanctuarysound.sanctuary_server:main',
            'sanctuarysound-mics = sanctuarysound.microphone:main',
        ],
    },
    zip_safe=False,
)
