"""Docker Consul Registrar (DCR).

Keeps the local Consul agent in step with the containers docker runs on this
host:
 - running containers are registered as services (name, port, tags, check)
 - stopped or vanished containers are deregistered
 - containers failing their Consul check are stopped and deregistered

Driven by the docker event stream, with a periodic full sweep to repair
anything the stream missed.
"""
