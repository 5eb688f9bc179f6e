from setuptools import find_packages, setup


setup_requires = ("setuptools_scm",)

install_requires = (
    "aiofiles>=23.2.1",
    "aiohttp>=3.9.0",
    "aiohttp-cors>=0.7.0",
    "aiohttp-security>=0.5.0",
    "cbor>=1.0.0",
    "uvloop>=0.19.0",
    "neuro-logging>=23.11.0",
)

tests_require = (
    "pytest>=7.4.0",
    "pytest-asyncio>=0.23.0",
)

setup(
    name="platform-nfs-api",
    url="https://github.com/neuro-inc/platform-nfs-api",
    use_scm_version={
        "git_describe_command": "git describe --dirty --tags --long --match v*.*.*",
        "fallback_version": "0.0.0",
    },
    packages=find_packages(exclude=("tests", "tests.*")),
    setup_requires=setup_requires,
    install_requires=install_requires,
    extras_require={"dev": tests_require},
    python_requires=">=3.9",
    entry_points={"console_scripts": "platform-nfs-api=platform_nfs_api.api:main"},
)
