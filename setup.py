from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="baliadanga-school",
    version="1.0.0",
    description="Baliadanga High School management API and admin client",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=[
        'app', 'app_models', 'config', 'errors', 'forms', 'auth', 'crud', 'uploads', 'api',
        'academics', 'daily_ops', 'security', 'health', 'build',
        'api_client', 'resource_manager', 'capabilities', 'screens', 'printing',
    ],
    include_package_data=True,
    install_requires=[
        'Flask>=2.3',
        'Flask-SQLAlchemy>=3.0',
        'Flask-WTF>=1.2',
        'Flask-Cors>=4.0',
        'Flask-Limiter>=3.5',
        'python-dotenv>=1.0',
        'SQLAlchemy>=2.0',
        'WTForms>=3.0',
        'Werkzeug>=2.3',
        'Jinja2>=3.1',
        'click>=8.1',
        'gunicorn>=21.2',
        'psycopg2-binary>=2.9',
        'bcrypt>=4.0',
        'python-jose>=3.3',
        'httpx>=0.27',
    ],
    extras_require={
        'test': [
            'pytest>=7.4',
        ],
    },
    python_requires='>=3.9',
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    entry_points={
        'console_scripts': [
            'baliadanga=app:main',
        ],
    },
)
