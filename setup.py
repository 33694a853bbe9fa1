from setuptools import setup, find_packages
from pathlib import Path

# Read requirements.txt for the install_requires field
with open('requirements.txt') as f:
    requirements = f.read().splitlines()

# Read README.md if it exists
readme_path = Path(__file__).parent / 'README.md'
long_description = readme_path.read_text() if readme_path.exists() else 'Random image gallery daemon'

setup(
    name='gallerica',
    version='0.3.0',
    description='Daemon that periodically shows a random image from a set of folders and can be controlled over IPC.',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},  # Tells setuptools packages are under src
    packages=find_packages(where='src',),  # Find packages in src
    include_package_data=True,
    install_requires=requirements,
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'gallerica=gallerica.daemon:main',
            'gallerica-cli=gallerica.cli:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: POSIX',
    ],
    python_requires='>=3.10'
)
