"""Package configuration."""

from setuptools import find_namespace_packages, setup

install_requires = [
    'prettytable',
    'requests',
    'wikimedia-spicerack',
    'wmflib',
]

# Extra dependencies
extras_require = {
    # Test dependencies
    'tests': [
        'bandit>=1.5.0',
        'flake8>=3.2.1',
        'mypy>=0.670',
        'pytest>=6.1.0',
        'types-PyYAML',
        'types-requests',
        'types-setuptools',
    ],
}

setup(
    description='Cookbooks to manage the lifecycle of Kafka brokers running on the Mesos Kafka framework',
    extras_require=extras_require,
    install_requires=install_requires,
    keywords=['kafka', 'mesos', 'automation', 'orchestration', 'cookbooks'],
    license='GPLv3+',
    name='mesoskafka-cookbooks',
    packages=find_namespace_packages(include=['cookbooks', 'cookbooks.*'], exclude=['*.tests', '*.tests.*']),
    platforms=['GNU/Linux'],
    python_requires='>=3.9',
    version='0.1.0',
    zip_safe=False,
)
