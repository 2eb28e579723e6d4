from setuptools import setup, find_packages

# Basic information
VERSION = '0.1.0'
DESCRIPTION = 'A CLI tool for monitoring manga sites and archiving new chapters'
LONG_DESCRIPTION = ('Scans configured manga sites for new chapters, downloads their pages '
                    'and packs every chapter into a zip archive, tracking state in SQLite.')

# Read from requirements.txt, but filter out comments and empty lines
try:
    with open('requirements.txt', encoding='utf-8') as f:
        install_requires = [line.strip() for line in f if line.strip() and not line.startswith('#')]
except FileNotFoundError:
    install_requires = ['requests', 'beautifulsoup4', 'click', 'python-slugify']

setup(
    name='manga-archiver',
    version=VERSION,
    author='Manga Archiver Team',
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    packages=find_packages(include=['manga_archiver', 'manga_archiver.*']),
    install_requires=install_requires,
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'manga-archiver = manga_archiver.cli.main:archiver',
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: End Users/Desktop',
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
        'Topic :: Utilities',
    ],
    python_requires='>=3.7',
)
