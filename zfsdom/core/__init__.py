"""Core building blocks: addresses, contexts, dataset engine and libvirt control."""
