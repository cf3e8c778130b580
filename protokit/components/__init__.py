"""Pipeline stages, leaf to root.

- workspace: target path -> CompilationUnit
- toolchain: cached protoc downloads
- compiler: CompilationUnit -> (FileDescriptorSet, failures)
- descriptors: descriptor set merge and serialization
- package_graph: descriptor sets -> PackageSet
- breaking: (PackageSet, PackageSet) -> failures
"""
