from setuptools import setup, find_packages

setup(
    name="meter_monitor",
    version="0.1.0",
    description="Electricity meter power estimation by counting LED pulses with a camera",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
        "opencv-python>=4.8",
    ],
    extras_require={
        "dev": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": [
            "meter-monitor=main:cli",
        ]
    },
)
