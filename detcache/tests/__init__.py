"""Test suite for detcache."""
