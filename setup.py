from setuptools import setup, find_packages

with open('requirements.txt') as f:
    requirements = [line for line in f.read().splitlines() if line and not line.startswith('#')]

with open('test-requirements.txt') as f:
    test_requirements = [line for line in f.read().splitlines() if line and not line.startswith('#')]

setup(name='build-farm-service',
      description='Jobset evaluation, build scheduling and notifications for a continuous build farm',
      version='1.0.0',
      classifiers=[
          "Programming Language :: Python",
          "Programming Language :: Python :: 3",
          "Topic :: Software Development :: Build Tools"
      ],
      keywords='continuous integration build farm jobset evaluation nix',
      license='MIT',
      python_requires='>=3.8',
      packages=find_packages(exclude=['tests', 'tests.*']),
      package_data={
          'build_farm_service': [
              'migrations/*.py',
              'migrations/*.mako',
              'migrations/versions/*.py',
          ],
      },
      include_package_data=True,
      zip_safe=False,
      install_requires=requirements,
      extras_require={'test': test_requirements},
      entry_points={
          'console_scripts': ['build_farm_evaluator = build_farm_service.manage:evaluator_main',
                              'build_farm_notify = build_farm_service.manage:notify_main',
                              'build_farm_manage = build_farm_service.manage:cli'],
          'build_farm_service.plugins': ['git_input = build_farm_service.plugins.git_input:GitInput',
                                         'run_command = build_farm_service.plugins.run_command:RunCommand'],
      },
      )
